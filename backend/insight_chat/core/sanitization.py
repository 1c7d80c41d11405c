"""
Input sanitization utilities for user-provided data.
"""
import re
import hashlib


# Markers that could be read by the model as a role switch or an instruction
PROMPT_INJECTION_PATTERNS = ['SYSTEM:', 'USER:', 'ASSISTANT:', 'IGNORE', 'FORGET', 'NEW INSTRUCTION']


def sanitize_filename(filename: str, max_length: int = 255) -> str:
    """
    Sanitize filename to prevent path traversal and log injection.

    Args:
        filename: Original filename
        max_length: Maximum length of sanitized filename

    Returns:
        Sanitized filename safe for logging and storage
    """
    if not filename:
        return "unknown"

    # Remove path components
    filename = filename.split('/')[-1].split('\\')[-1]

    # Remove control characters and newlines
    filename = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', filename)

    # Remove leading/trailing dots and spaces
    filename = filename.strip('. ')

    if len(filename) > max_length:
        filename = filename[:max_length]

    return filename or "unknown"


def sanitize_for_logging(value: str, max_length: int = 500) -> str:
    """
    Sanitize value for safe logging (prevents log injection).

    Args:
        value: Value to sanitize
        max_length: Maximum length

    Returns:
        Sanitized value safe for logging
    """
    if not value:
        return ""

    # Remove newlines and carriage returns
    value = re.sub(r'[\r\n]', ' ', value)

    # Remove other control characters
    value = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', value)

    if len(value) > max_length:
        value = value[:max_length] + "..."

    return value


def sanitize_for_prompt(text: str, max_length: int = 1000) -> str:
    """
    Sanitize user-provided text before including it in a prompt.

    Prevents prompt injection by:
    - Removing control characters and newlines
    - Limiting length
    - Bracketing patterns that look like instructions
    """
    if not text:
        return ""

    sanitized = ''.join(char for char in text if char.isprintable() and char not in '\n\r\t')

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    for pattern in PROMPT_INJECTION_PATTERNS:
        sanitized = sanitized.replace(pattern, f'[{pattern}]')

    return sanitized


def transcript_key(file_name: str) -> str:
    """
    Derive the transcript store key for an uploaded file.

    The key is stable for the same file name so a conversation can be resumed
    after the session expires.
    """
    safe_name = sanitize_filename(file_name)
    digest = hashlib.sha256(safe_name.encode()).hexdigest()[:16]
    return f"transcript:{digest}"
