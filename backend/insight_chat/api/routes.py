import json
import logging
from typing import AsyncIterator, Awaitable, Callable, List, TypeVar
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse
from slowapi.errors import RateLimitExceeded
from insight_chat.core.errors import (
    DataFormatError,
    ErrorCodes,
    FileTooLargeError,
    InsightChatError,
    InvalidKeyError,
    QuotaExceededError,
    ServiceError,
    SessionStateError,
    error_code_for,
    get_error_response,
)
from insight_chat.core.sanitization import sanitize_for_logging
from insight_chat.core.schemas import (
    AnalysisResult,
    ConversationTurn,
    DrillDownRequest,
    QuestionRequest,
    SessionView,
)
from insight_chat.services.completion import CompletionClient, RetryPolicy
from insight_chat.services.providers import build_completion_service
from insight_chat.services.session import AnalysisSession, SessionRegistry
from insight_chat.services.upload import extract_csv

logger = logging.getLogger(__name__)

router = APIRouter()

T = TypeVar("T")


def get_registry(request: Request) -> SessionRegistry:
    """Session registry from app state."""
    return request.app.state.registry


def get_completion_client(request: Request) -> CompletionClient:
    """
    Completion client built once from settings and kept in app state.

    Tests override this dependency with a client around a fake service.
    """
    client = getattr(request.app.state, "completion_client", None)
    if client is None:
        settings = request.app.state.settings
        try:
            service = build_completion_service(settings)
        except InvalidKeyError as e:
            logger.error(f"Completion service unavailable: {e.message}")
            raise http_error(request, e)
        client = CompletionClient(service, RetryPolicy.from_settings(settings))
        request.app.state.completion_client = client
    return client


def status_for(exc: Exception) -> int:
    """HTTP status for a pipeline exception."""
    if isinstance(exc, FileTooLargeError):
        return 413
    if isinstance(exc, DataFormatError):
        return 400
    if isinstance(exc, SessionStateError):
        return 409
    if isinstance(exc, QuotaExceededError):
        return 429
    if isinstance(exc, InvalidKeyError):
        return 503
    if isinstance(exc, (ServiceError, InsightChatError)):
        return 502
    return 500


def http_error(request: Request, exc: Exception) -> HTTPException:
    """Structured HTTPException for any exception raised by the pipeline."""
    correlation_id = getattr(request.state, 'correlation_id', 'unknown')
    detail = exc.message if isinstance(exc, InsightChatError) else None
    error_info = get_error_response(error_code_for(exc), detail)
    error_info['correlation_id'] = correlation_id
    return HTTPException(status_code=status_for(exc), detail=error_info)


async def _rate_limited(request: Request, handler: Callable[[], Awaitable[T]]) -> T:
    """Run handler under the per-IP rate limit from settings."""
    limiter = request.app.state.limiter
    app_settings = request.app.state.settings

    @limiter.limit(f"{app_settings.rate_limit_per_minute}/minute")
    async def _rate_limited_handler(request: Request):
        return await handler()

    return await _rate_limited_handler(request)


def _session_or_404(request: Request, registry: SessionRegistry, session_id: str) -> AnalysisSession:
    session = registry.get(session_id)
    if session is None:
        error_info = get_error_response(ErrorCodes.SESSION_NOT_FOUND)
        error_info['correlation_id'] = getattr(request.state, 'correlation_id', 'unknown')
        raise HTTPException(status_code=404, detail=error_info)
    return session


async def _run(request: Request, action: str, operation: Callable[[], Awaitable[T]]) -> T:
    try:
        return await _rate_limited(request, operation)
    except (HTTPException, RateLimitExceeded):
        raise
    except InsightChatError as e:
        logger.warning(f"{action} failed: {type(e).__name__}: {sanitize_for_logging(e.message)}")
        raise http_error(request, e)
    except Exception as e:
        logger.error(f"Unexpected error during {action}: {e}", exc_info=True)
        raise http_error(request, e)


@router.get("/health")
async def health_check():
    return {"status": "ok"}


@router.post("/sessions", response_model=SessionView)
async def create_session(
    request: Request,
    file: UploadFile = File(...),
    registry: SessionRegistry = Depends(get_registry),
    client: CompletionClient = Depends(get_completion_client),
):
    """
    Upload a CSV (or a ZIP holding one), profile it and run the pre-analysis.

    Rate limited per IP address (configurable).
    """
    settings = request.app.state.settings

    async def handler() -> SessionView:
        content = await file.read()
        file_name, csv_text = extract_csv(
            file.filename or "", content, settings.max_file_size_bytes, file.content_type
        )
        session = registry.create(client, settings=settings)
        try:
            await session.upload(file_name, csv_text)
        except Exception:
            registry.remove(session.session_id)
            raise
        return session.view()

    return await _run(request, "upload", handler)


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str, request: Request, registry: SessionRegistry = Depends(get_registry)):
    return _session_or_404(request, registry, session_id).view()


@router.post("/sessions/{session_id}/analysis", response_model=ConversationTurn)
async def start_analysis(
    session_id: str,
    body: QuestionRequest,
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
):
    """Run the first full analysis for a suggested or free-text question."""
    session = _session_or_404(request, registry, session_id)
    return await _run(request, "analysis", lambda: session.start_analysis(body.question))


@router.post("/sessions/{session_id}/messages", response_model=ConversationTurn)
async def send_message(
    session_id: str,
    body: QuestionRequest,
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
):
    """Ask a chat question. Failures come back as an error turn, not an HTTP error."""
    session = _session_or_404(request, registry, session_id)
    return await _run(request, "chat turn", lambda: session.ask(body.question))


async def ndjson_updates(session: AnalysisSession, question: str, correlation_id: str) -> AsyncIterator[str]:
    """
    NDJSON lines for one streamed answer.

    A question that loses the race for the session after the response has
    started ends the stream with one ``{"type": "error", ...}`` line.
    """
    try:
        async for update in session.ask_stream(question):
            if update.final:
                line = {"type": "final", "turn": update.turn.model_dump(mode="json")}
            else:
                line = {"type": "partial", "text": update.partial_text}
            yield json.dumps(line) + "\n"
    except SessionStateError as e:
        logger.warning(f"Streamed question rejected: {e.message}")
        error_info = get_error_response(error_code_for(e), e.message)
        error_info["correlation_id"] = correlation_id
        yield json.dumps({"type": "error", "error": error_info}) + "\n"


@router.post("/sessions/{session_id}/messages/stream")
async def stream_message(
    session_id: str,
    body: QuestionRequest,
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Ask a chat question and stream the answer as NDJSON.

    Lines are ``{"type": "partial", "text": ...}`` with the text so far,
    then one ``{"type": "final", "turn": ...}``, or one ``{"type": "error", ...}``
    when another question took the session first.
    """
    session = _session_or_404(request, registry, session_id)

    async def check():
        session.ensure_can_ask()

    await _run(request, "chat stream", check)

    correlation_id = getattr(request.state, "correlation_id", "unknown")
    return StreamingResponse(
        ndjson_updates(session, body.question, correlation_id),
        media_type="application/x-ndjson",
    )


@router.post("/sessions/{session_id}/drill-down", response_model=ConversationTurn)
async def drill_down(
    session_id: str,
    body: DrillDownRequest,
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
):
    """Ask about one clicked point of a chart."""
    session = _session_or_404(request, registry, session_id)
    return await _run(request, "drill-down", lambda: session.drill_down(body.chart_title, body.data_point))


@router.get("/sessions/{session_id}/analyses", response_model=List[AnalysisResult])
async def list_analyses(session_id: str, request: Request, registry: SessionRegistry = Depends(get_registry)):
    """All analysis results of the conversation, for export."""
    return _session_or_404(request, registry, session_id).analyses()


@router.post("/sessions/{session_id}/resume", response_model=SessionView)
async def resume_session(session_id: str, request: Request, registry: SessionRegistry = Depends(get_registry)):
    """Reload the saved conversation for the session's file, if any."""
    session = _session_or_404(request, registry, session_id)

    async def handler() -> SessionView:
        session.resume()
        return session.view()

    return await _run(request, "resume", handler)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, request: Request, registry: SessionRegistry = Depends(get_registry)):
    """Reset the session and forget it, including its saved transcript."""
    session = _session_or_404(request, registry, session_id)
    session.reset()
    registry.remove(session_id)
    return {"status": "deleted", "session_id": session_id}
