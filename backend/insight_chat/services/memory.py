"""
Conversation memory: keeps the history sent with each question bounded.

Small transcripts travel verbatim. Once the transcript passes the
character threshold only the last few turns travel verbatim, and the older
ones are compressed into a rolling summary by a background completion.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple
from insight_chat.core.schemas import ConversationTurn
from insight_chat.services.completion import CompletionClient
from insight_chat.services.normalizer import parse_summary
from insight_chat.services.output_schemas import SUMMARY_SCHEMA
from insight_chat.services.prompts import build_summary_prompt

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 4000
DEFAULT_RECENT_TURNS = 4


@dataclass(frozen=True)
class MemoryPlan:
    history: str  # verbatim history for the prompt being built now
    summary: str  # rolling summary for that prompt, "" under the threshold
    older: str  # text to compress for future prompts, "" under the threshold


def format_turn(turn: ConversationTurn) -> str:
    return f"{turn.sender.value}: {turn.text}"


class ConversationMemory:
    """
    Rolling-summary memory for one conversation.

    The summary and the sequence number of the summarization that produced
    it are swapped together as one tuple. A result is applied only when its
    sequence is newer than the applied one, so a slow, older summarization
    can never overwrite a newer summary.
    """

    def __init__(self, threshold: int = DEFAULT_THRESHOLD, recent_turns: int = DEFAULT_RECENT_TURNS):
        self.threshold = threshold
        self.recent_turns = recent_turns
        self._state: Tuple[int, str] = (0, "")
        self._launched = 0
        self._last_older = ""
        self._pending: Set[asyncio.Task] = set()

    @property
    def summary(self) -> str:
        return self._state[1]

    @property
    def pending(self) -> int:
        return len(self._pending)

    def plan(self, turns: List[ConversationTurn]) -> MemoryPlan:
        """Split the settled turns into prompt history, summary and text to compress."""
        lines = [format_turn(t) for t in turns if not t.in_flight]
        transcript = "\n".join(lines)
        if len(transcript) <= self.threshold:
            return MemoryPlan(history=transcript, summary="", older="")

        recent = lines[-self.recent_turns:]
        older = lines[:-self.recent_turns]
        return MemoryPlan(history="\n".join(recent), summary=self.summary, older="\n".join(older))

    async def summarize(self, client: CompletionClient, older_text: str, temperature: float = 0.2) -> str:
        """Compress older turns. Never raises; any failure gives ""."""
        if not older_text.strip():
            return ""
        try:
            raw = await client.invoke(build_summary_prompt(older_text), SUMMARY_SCHEMA, temperature)
            return parse_summary(raw)
        except Exception as e:
            logger.warning(f"Summarization failed, keeping the previous summary: {type(e).__name__}: {e}")
            return ""

    def apply_summary(self, sequence: int, summary: str) -> bool:
        """Install a summarization result unless it is empty or stale."""
        applied_sequence, _ = self._state
        if not summary:
            return False
        if sequence <= applied_sequence:
            logger.debug(f"Discarding stale summary #{sequence} (applied #{applied_sequence})")
            return False
        self._state = (sequence, summary)
        logger.info(f"Applied conversation summary #{sequence} ({len(summary)} chars)")
        return True

    def schedule_summary(
        self,
        client: CompletionClient,
        older_text: str,
        temperature: float = 0.2,
    ) -> Optional["asyncio.Task[str]"]:
        """
        Start a background summarization of `older_text`.

        Returns None when there is nothing new to compress. The caller never
        awaits the task; its result is applied when it resolves.
        """
        if not older_text or older_text == self._last_older:
            return None
        self._last_older = older_text
        self._launched += 1
        sequence = self._launched

        task = asyncio.create_task(self._run(client, older_text, sequence, temperature))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.info(f"Scheduled conversation summary #{sequence} over {len(older_text)} chars")
        return task

    async def _run(self, client: CompletionClient, older_text: str, sequence: int, temperature: float) -> str:
        summary = await self.summarize(client, older_text, temperature)
        self.apply_summary(sequence, summary)
        return summary

    async def wait_for_pending(self) -> None:
        """Wait until every scheduled summarization has resolved."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def reset(self) -> None:
        """Forget the summary and cancel summarizations still running."""
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self._state = (0, "")
        self._launched = 0
        self._last_older = ""
