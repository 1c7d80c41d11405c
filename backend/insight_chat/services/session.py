"""
Analysis session: sequences profiling, pre-analysis, the first analysis and
the chat turns of one uploaded file.

    PRE_ANALYSIS -> LOADING -> SHOWING_SUGGESTIONS -> LOADING -> CHAT
                         \\-> ERROR              \\-> ERROR

Only one primary operation (upload, analysis or question) may run at a
time per session; callers disable input while one is pending. A second
question while one is in flight is rejected with SessionStateError.
"""
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4
from pydantic import ValidationError
from insight_chat.core.cache import SimpleCache, get_session_cache
from insight_chat.core.config import Settings, get_settings
from insight_chat.core.errors import InsightChatError, SessionStateError, to_user_error
from insight_chat.core.performance import track_performance
from insight_chat.core.sanitization import sanitize_filename, sanitize_for_logging, transcript_key
from insight_chat.core.schemas import (
    AnalysisResult,
    ConversationTurn,
    DatasetProfile,
    PreAnalysisResult,
    Sender,
    SessionState,
    SessionView,
    UserError,
)
from insight_chat.core.storage import TranscriptStore, get_transcript_store
from insight_chat.services.completion import CompletionClient
from insight_chat.services.memory import ConversationMemory, MemoryPlan
from insight_chat.services.normalizer import normalize_analysis, parse_pre_analysis
from insight_chat.services.output_schemas import ANALYSIS_RESULT_SCHEMA, PRE_ANALYSIS_RESULT_SCHEMA
from insight_chat.services.profiler import profile_csv
from insight_chat.services.prompts import (
    build_analysis_prompt,
    build_drill_down_question,
    build_pre_analysis_prompt,
)

logger = logging.getLogger(__name__)

INITIAL_ANALYSIS_TEXT = "Here is the initial analysis of your dataset. What else would you like to explore?"
ANSWER_TEXT = "Based on your request, here are the key findings I identified."
CANCELLED_TEXT = "The answer was cancelled before it completed."


@dataclass(frozen=True)
class TurnUpdate:
    """One step of a streamed answer. Partial text is for display only."""

    partial_text: str
    final: bool
    turn: Optional[ConversationTurn] = None


def _new_turn(sender: Sender, text: str, **kwargs) -> ConversationTurn:
    return ConversationTurn(id=uuid4().hex, sender=sender, text=text, **kwargs)


def _agent_turn(lead: str, result: AnalysisResult) -> ConversationTurn:
    # Insights are part of the text so they reach the conversation memory
    lines = [lead] + [f"- {finding.insight}" for finding in result.findings]
    return _new_turn(Sender.AGENT, "\n".join(lines), analysis_result=result)


def _error_turn(exc: Exception) -> ConversationTurn:
    user_error = to_user_error(exc)
    return _new_turn(Sender.AGENT, f"Sorry, an error occurred: {user_error['message']}", is_error=True)


class AnalysisSession:
    """State machine for one uploaded CSV and its conversation."""

    def __init__(
        self,
        client: CompletionClient,
        settings: Optional[Settings] = None,
        store: Optional[TranscriptStore] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid4().hex
        self.client = client
        self.settings = settings or get_settings()
        self.store = store if store is not None else get_transcript_store()
        self.memory = ConversationMemory(
            threshold=self.settings.history_char_threshold,
            recent_turns=self.settings.recent_turns_kept,
        )
        self._clear()

    def _clear(self):
        self.state = SessionState.PRE_ANALYSIS
        self.file_name: Optional[str] = None
        self.csv_text: Optional[str] = None
        self.profile: Optional[DatasetProfile] = None
        self.pre_analysis: Optional[PreAnalysisResult] = None
        self.turns: List[ConversationTurn] = []
        self.error: Optional[UserError] = None

    @property
    def summary(self) -> str:
        return self.memory.summary

    @property
    def in_flight(self) -> bool:
        return any(t.in_flight for t in self.turns)

    def view(self) -> SessionView:
        return SessionView(
            session_id=self.session_id,
            state=self.state,
            file_name=self.file_name,
            profile=self.profile,
            pre_analysis=self.pre_analysis,
            turns=self.turns,
            error=self.error,
        )

    # State handling

    def _require(self, action: str, *states: SessionState):
        if self.state not in states:
            raise SessionStateError(f"Cannot {action} while the session is in state '{self.state.value}'.")

    def _transition(self, state: SessionState):
        logger.info(f"Session {self.session_id[:8]}: {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, exc: Exception, step: str):
        if isinstance(exc, InsightChatError):
            logger.warning(f"{step} failed: {type(exc).__name__}: {exc.message}")
        else:
            logger.exception(f"{step} failed unexpectedly")
        self.error = UserError(**to_user_error(exc))
        self._transition(SessionState.ERROR)

    # Operations

    @track_performance("session_upload")
    async def upload(self, file_name: str, csv_text: str) -> PreAnalysisResult:
        """
        Profile the CSV and run the quick-recognition round trip.

        On failure the session moves to ERROR with a user error, and the
        exception is re-raised.
        """
        self._require("upload a file", SessionState.PRE_ANALYSIS)
        self.file_name = sanitize_filename(file_name)
        self._transition(SessionState.LOADING)
        logger.info(f"Received file: {self.file_name}")

        try:
            self.profile = profile_csv(csv_text)
            self.csv_text = csv_text
            prompt = build_pre_analysis_prompt(
                self.profile,
                csv_text,
                language=self.settings.response_language,
                max_sample_lines=self.settings.quick_sample_lines,
            )
            raw = await self.client.invoke(prompt, PRE_ANALYSIS_RESULT_SCHEMA, self.settings.pre_analysis_temperature)
            self.pre_analysis = parse_pre_analysis(raw)
        except Exception as e:
            self._fail(e, "Pre-analysis")
            raise

        self._transition(SessionState.SHOWING_SUGGESTIONS)
        return self.pre_analysis

    @track_performance("session_start_analysis")
    async def start_analysis(self, question: str) -> ConversationTurn:
        """
        Full analysis of a suggested or free-text question; seeds the chat.

        On failure the session moves to ERROR and the exception is re-raised.
        """
        self._require("start the analysis", SessionState.SHOWING_SUGGESTIONS)
        self._transition(SessionState.LOADING)
        logger.info(f"Starting analysis: {sanitize_for_logging(question, 200)}")

        try:
            result = await self._analyze(question, MemoryPlan(history="", summary="", older=""))
        except Exception as e:
            self._fail(e, "Analysis")
            raise

        turn = _agent_turn(INITIAL_ANALYSIS_TEXT, result)
        self.turns = [turn]
        self._transition(SessionState.CHAT)
        self._persist()
        return turn

    async def _analyze(self, question: str, plan: MemoryPlan) -> AnalysisResult:
        raw = await self.client.invoke(
            self._analysis_prompt(question, plan),
            ANALYSIS_RESULT_SCHEMA,
            self.settings.analysis_temperature,
        )
        return normalize_analysis(raw, self.profile)

    def _analysis_prompt(self, question: str, plan: MemoryPlan) -> str:
        return build_analysis_prompt(
            self.csv_text or "",
            question,
            recent_history=plan.history,
            running_summary=plan.summary,
            profile=self.profile,
            language=self.settings.response_language,
            max_sample_lines=self.settings.prompt_sample_lines,
        )

    def ensure_can_ask(self):
        """Raise SessionStateError unless a chat question can be asked now."""
        self._require("ask a question", SessionState.CHAT)
        if self.in_flight:
            raise SessionStateError("A question is already being answered.")

    def _begin_turn(self, question: str):
        self.ensure_can_ask()
        plan = self.memory.plan(self.turns)
        if plan.older:
            self.memory.schedule_summary(self.client, plan.older, self.settings.summary_temperature)

        placeholder = _new_turn(Sender.AGENT, "", in_flight=True)
        self.turns = self.turns + [_new_turn(Sender.USER, question), placeholder]
        logger.info(f"Question received: {sanitize_for_logging(question, 200)}")
        return plan, placeholder

    def _finish_turn(self, placeholder: ConversationTurn, turn: ConversationTurn):
        self.turns = [turn if t.id == placeholder.id else t for t in self.turns]
        self._persist()

    @track_performance("session_chat_turn")
    async def ask(self, question: str) -> ConversationTurn:
        """
        Answer one chat question.

        Failures do not raise: the in-flight turn is replaced by an error
        turn and the rest of the conversation is left untouched.
        """
        plan, placeholder = self._begin_turn(question)
        try:
            turn = _agent_turn(ANSWER_TEXT, await self._analyze(question, plan))
        except Exception as e:
            logger.warning(f"Chat turn failed: {type(e).__name__}: {e}")
            turn = _error_turn(e)
        self._finish_turn(placeholder, turn)
        return turn

    async def ask_stream(self, question: str) -> AsyncIterator[TurnUpdate]:
        """
        Answer one chat question, yielding the accumulated text as it streams.

        The last update has ``final=True`` and carries the finished (or
        error) turn. Closing the generator early cancels the completion and
        records the turn as cancelled.
        """
        plan, placeholder = self._begin_turn(question)
        stream = None
        turn: Optional[ConversationTurn] = None
        try:
            try:
                stream = await self.client.invoke_stream(
                    self._analysis_prompt(question, plan),
                    ANALYSIS_RESULT_SCHEMA,
                    self.settings.analysis_temperature,
                )
                async for chunk in stream:
                    yield TurnUpdate(partial_text=chunk.accumulated, final=False)
                turn = _agent_turn(ANSWER_TEXT, normalize_analysis(stream.text, self.profile))
            except Exception as e:
                logger.warning(f"Streamed chat turn failed: {type(e).__name__}: {e}")
                turn = _error_turn(e)
        finally:
            if stream is not None:
                await stream.aclose()
            if turn is None:
                turn = _new_turn(Sender.AGENT, CANCELLED_TEXT, is_error=True)
            self._finish_turn(placeholder, turn)

        yield TurnUpdate(partial_text=turn.text, final=True, turn=turn)

    async def drill_down(self, chart_title: str, data_point: Dict[str, Any]) -> ConversationTurn:
        """Ask about one clicked point of a chart."""
        return await self.ask(build_drill_down_question(chart_title, data_point))

    def analyses(self) -> List[AnalysisResult]:
        """Every analysis result in the conversation, oldest first."""
        return [t.analysis_result for t in self.turns if t.sender == Sender.AGENT and t.analysis_result]

    def reset(self):
        """Back to PRE_ANALYSIS, discarding profile, summary and transcript."""
        if self.file_name:
            self.store.remove(transcript_key(self.file_name))
        self.memory.reset()
        self._clear()
        logger.info(f"Session {self.session_id[:8]} reset")

    def resume(self) -> bool:
        """
        Reload the saved conversation for the uploaded file and enter CHAT.

        Returns False, leaving the session as it is, when nothing usable
        was saved.
        """
        self._require("resume a conversation", SessionState.SHOWING_SUGGESTIONS)
        saved = self.store.get(transcript_key(self.file_name or ""))
        if not saved:
            return False
        try:
            turns = [ConversationTurn.model_validate(t) for t in saved]
        except ValidationError as e:
            logger.warning(f"Saved transcript for {self.file_name} is unreadable: {e.error_count()} errors")
            return False

        self.turns = [t for t in turns if not t.in_flight]
        self._transition(SessionState.CHAT)
        logger.info(f"Resumed conversation with {len(self.turns)} turns")
        return True

    def _persist(self):
        if not self.file_name:
            return
        saved = [t.model_dump(mode="json") for t in self.turns if not t.in_flight]
        if not self.store.set(transcript_key(self.file_name), saved):
            logger.warning(f"Transcript for {self.file_name} could not be saved")


class SessionRegistry:
    """Live sessions by id, expiring after a period without access."""

    def __init__(self, cache: Optional[SimpleCache] = None):
        self._cache = cache or get_session_cache()

    def create(
        self,
        client: CompletionClient,
        settings: Optional[Settings] = None,
        store: Optional[TranscriptStore] = None,
    ) -> AnalysisSession:
        session = AnalysisSession(client, settings=settings, store=store)
        self._cache.set(session.session_id, session)
        logger.info(f"Created session {session.session_id[:8]}")
        return session

    def get(self, session_id: str) -> Optional[AnalysisSession]:
        return self._cache.get(session_id)

    def remove(self, session_id: str) -> bool:
        return self._cache.delete(session_id)

    def stats(self) -> Dict[str, Any]:
        return self._cache.get_stats()
