"""
Error taxonomy and user-friendly error messages.

Every failure the analysis pipeline can raise is one of the exception
classes below. The HTTP layer turns them into structured payloads with
`get_error_response`, the session turns them into `{title, message}` pairs
with `to_user_error`.
"""
from typing import Dict, Optional


class InsightChatError(Exception):
    """Base class for all pipeline errors."""

    title = "Processing error"

    def __init__(self, message: str, title: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if title:
            self.title = title


class DataFormatError(InsightChatError):
    """The uploaded file is not a usable CSV (no data rows, wrong type, too large)."""

    title = "File error"


class EmptyFileError(DataFormatError):
    """The upload has no content."""


class FileTooLargeError(DataFormatError):
    """The upload exceeds the configured size limit."""


class UnsupportedFileTypeError(DataFormatError):
    """The upload is neither a CSV nor a ZIP holding one."""


class ServiceError(InsightChatError):
    """The completion service failed."""

    title = "AI service error"
    kind = "other"


class InvalidKeyError(ServiceError):
    """The completion service rejected our credentials."""

    kind = "invalid-key"


class QuotaExceededError(ServiceError):
    """Rate limit or quota exhausted; the only retryable service failure."""

    kind = "quota"


class ResponseParseError(InsightChatError):
    """The service returned text that is not the JSON we asked for."""

    title = "Unexpected AI response"


class ChartDataError(InsightChatError):
    """The JSON was valid but a chart's table could not be interpreted."""

    title = "Chart data error"


class SessionStateError(InsightChatError):
    """An operation was requested in a session state that does not allow it."""

    title = "Session error"


# Error codes
class ErrorCodes:
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    FILE_EMPTY = "FILE_EMPTY"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    PARSE_ERROR = "PARSE_ERROR"
    AI_RESPONSE_ERROR = "AI_RESPONSE_ERROR"
    CHART_DATA_ERROR = "CHART_DATA_ERROR"
    AI_QUOTA_EXCEEDED = "AI_QUOTA_EXCEEDED"
    AI_INVALID_KEY = "AI_INVALID_KEY"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    INVALID_SESSION_STATE = "INVALID_SESSION_STATE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# User-friendly error messages - friendly, helpful, and empathetic
ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    ErrorCodes.FILE_TOO_LARGE: {
        "message": "Oops! Your file is a bit too large",
        "detail": "Your file exceeds our size limit. Only a sample is ever sent to the AI, but the whole file still has to be read.",
        "suggestion": "💡 Try exporting just the columns you need, or a representative subset of the rows."
    },
    ErrorCodes.FILE_EMPTY: {
        "message": "Hmm, your file looks empty",
        "detail": "We couldn't find any data rows in the file you uploaded.",
        "suggestion": "💡 Make sure the first line holds the column names and at least one line of data follows it."
    },
    ErrorCodes.INVALID_FILE_TYPE: {
        "message": "We need a CSV file",
        "detail": "We can read .csv files, or a .zip archive that contains one.",
        "suggestion": "💡 Most spreadsheet tools have a 'Download as CSV' option in the File menu."
    },
    ErrorCodes.PARSE_ERROR: {
        "message": "We're having trouble reading your file",
        "detail": "Something's not quite right with the file format.",
        "suggestion": "💡 Check that your file has headers in the first row and comma-separated values below them."
    },
    ErrorCodes.AI_RESPONSE_ERROR: {
        "message": "The AI answered in an unexpected format",
        "detail": "We couldn't understand the response we got back.",
        "suggestion": "💡 Try asking your question again, perhaps phrased a little differently."
    },
    ErrorCodes.CHART_DATA_ERROR: {
        "message": "We couldn't draw one of the charts",
        "detail": "The AI described a chart whose data doesn't line up with its axes.",
        "suggestion": "💡 Ask again, or ask for the answer as text only."
    },
    ErrorCodes.AI_QUOTA_EXCEEDED: {
        "message": "The AI service is busy right now",
        "detail": "We've hit the AI provider's rate limit and retries didn't get through.",
        "suggestion": "💡 Wait a minute and try again. Your conversation is still here!"
    },
    ErrorCodes.AI_INVALID_KEY: {
        "message": "The AI service isn't configured correctly",
        "detail": "The AI provider rejected our credentials.",
        "suggestion": "💡 Ask whoever runs this service to check the API key."
    },
    ErrorCodes.AI_SERVICE_ERROR: {
        "message": "We couldn't reach the AI service",
        "detail": "The request to the AI provider failed.",
        "suggestion": "💡 Give it another try in a moment."
    },
    ErrorCodes.SESSION_NOT_FOUND: {
        "message": "We couldn't find that analysis",
        "detail": "The session may have expired after a period of inactivity.",
        "suggestion": "💡 Upload your file again to start a new analysis."
    },
    ErrorCodes.INVALID_SESSION_STATE: {
        "message": "That isn't possible right now",
        "detail": "The analysis isn't in a state that allows this action.",
        "suggestion": "💡 Wait for the current step to finish, or start over."
    },
    ErrorCodes.RATE_LIMIT_EXCEEDED: {
        "message": "Whoa there! Slow down a bit",
        "detail": "You're sending requests faster than we can keep up!",
        "suggestion": "💡 Take a quick break and try again in about a minute."
    },
    ErrorCodes.TIMEOUT: {
        "message": "This is taking longer than expected",
        "detail": "The analysis didn't finish in time.",
        "suggestion": "💡 Try a narrower question, or a smaller file."
    },
    ErrorCodes.UNKNOWN_ERROR: {
        "message": "Hmm, something unexpected happened",
        "detail": "We encountered an issue we weren't expecting. Don't worry - it's not your fault!",
        "suggestion": "💡 Give it another try in a moment, or start over with your file."
    }
}


def get_error_response(error_code: str, additional_detail: Optional[str] = None) -> Dict[str, str]:
    """
    Get user-friendly error response for an error code.

    Args:
        error_code: One of the ErrorCodes constants
        additional_detail: Optional additional detail to append

    Returns:
        Dictionary with code, message, detail, and suggestion
    """
    error_info = ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCodes.UNKNOWN_ERROR])

    response = {
        "code": error_code,
        "message": error_info["message"],
        "detail": error_info["detail"],
        "suggestion": error_info["suggestion"]
    }

    if additional_detail:
        response["detail"] = f"{response['detail']} {additional_detail}"

    return response


def error_code_for(exc: Exception) -> str:
    """Map a pipeline exception onto an ErrorCodes constant."""
    if isinstance(exc, FileTooLargeError):
        return ErrorCodes.FILE_TOO_LARGE
    if isinstance(exc, EmptyFileError):
        return ErrorCodes.FILE_EMPTY
    if isinstance(exc, UnsupportedFileTypeError):
        return ErrorCodes.INVALID_FILE_TYPE
    if isinstance(exc, DataFormatError):
        return ErrorCodes.PARSE_ERROR
    if isinstance(exc, ChartDataError):
        return ErrorCodes.CHART_DATA_ERROR
    if isinstance(exc, ResponseParseError):
        return ErrorCodes.AI_RESPONSE_ERROR
    if isinstance(exc, QuotaExceededError):
        return ErrorCodes.AI_QUOTA_EXCEEDED
    if isinstance(exc, InvalidKeyError):
        return ErrorCodes.AI_INVALID_KEY
    if isinstance(exc, ServiceError):
        return ErrorCodes.AI_SERVICE_ERROR
    if isinstance(exc, SessionStateError):
        return ErrorCodes.INVALID_SESSION_STATE
    return ErrorCodes.UNKNOWN_ERROR


def to_user_error(exc: Exception) -> Dict[str, str]:
    """
    Turn any exception into the `{title, message}` pair shown to the user.

    Pipeline errors carry their own title and message. Anything else is
    reported generically so internal details never reach the chat.
    """
    if isinstance(exc, ResponseParseError):
        return {"title": exc.title, "message": f"The AI response could not be processed. {exc.message}"}
    if isinstance(exc, InsightChatError):
        return {"title": exc.title, "message": exc.message}
    return {
        "title": "Unexpected error",
        "message": "An unexpected error occurred while processing your data. Please try again.",
    }
