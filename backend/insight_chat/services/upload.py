"""
Upload intake: turns an uploaded .csv or .zip into CSV text.
"""
import io
import logging
import zipfile
from pathlib import Path
from typing import Optional, Tuple
from insight_chat.core.errors import (
    DataFormatError,
    EmptyFileError,
    FileTooLargeError,
    UnsupportedFileTypeError,
)
from insight_chat.core.performance import track_performance
from insight_chat.core.sanitization import sanitize_filename, sanitize_for_logging

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'.csv', '.zip'}

# MIME types that are never a spreadsheet export
DANGEROUS_MIME_TYPES = {
    'application/x-executable',
    'application/x-sharedlib',
    'application/x-msdownload',
    'text/html',
    'application/javascript',
}


def validate_file_extension(filename: str) -> str:
    """Return the lower-cased extension, or raise UnsupportedFileTypeError."""
    file_ext = Path(filename or '').suffix.lower()
    if file_ext not in ALLOWED_EXTENSIONS:
        raise UnsupportedFileTypeError(
            f"Unsupported file format: {file_ext or 'none'}. Allowed formats: .csv, .zip"
        )
    return file_ext


def validate_mime_type(content_type: Optional[str]) -> None:
    if content_type and content_type.lower() in DANGEROUS_MIME_TYPES:
        raise UnsupportedFileTypeError(f"File type '{content_type}' is not allowed. Only CSV and ZIP files are supported.")


def decode_text(content: bytes) -> str:
    """UTF-8 (BOM tolerated), falling back to latin-1."""
    try:
        return content.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.info("Upload is not valid UTF-8, decoding as latin-1")
        return content.decode('latin-1')


def _csv_from_zip(content: bytes, max_bytes: int) -> Tuple[str, bytes]:
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile:
        raise DataFormatError("The ZIP archive could not be opened.")

    with archive:
        for info in archive.infolist():
            if info.is_dir() or info.filename.startswith('__MACOSX/'):
                continue
            if info.filename.lower().endswith('.csv'):
                if info.file_size > max_bytes:
                    raise FileTooLargeError("The CSV file inside the ZIP archive exceeds the size limit.")
                logger.info(f"Extracting {sanitize_for_logging(info.filename)} from ZIP archive")
                return info.filename, archive.read(info)

    raise DataFormatError("No CSV file found in the ZIP archive.")


@track_performance("extract_csv")
def extract_csv(
    filename: str,
    content: bytes,
    max_bytes: int,
    content_type: Optional[str] = None,
) -> Tuple[str, str]:
    """
    Validate an upload and return ``(file_name, csv_text)``.

    For a ZIP archive the first CSV entry is used and its name is returned.

    Raises:
        UnsupportedFileTypeError, EmptyFileError, FileTooLargeError, DataFormatError
    """
    file_ext = validate_file_extension(filename)
    validate_mime_type(content_type)

    if not content:
        raise EmptyFileError("File is empty.")
    if len(content) > max_bytes:
        raise FileTooLargeError(
            f"Maximum size is {max_bytes / 1024 / 1024:.0f}MB. Your file is {len(content) / 1024 / 1024:.2f}MB."
        )

    if file_ext == '.zip':
        filename, content = _csv_from_zip(content, max_bytes)
        if not content:
            raise EmptyFileError("The CSV file inside the ZIP archive is empty.")

    safe_name = sanitize_filename(filename)
    logger.info(f"Accepted file: {sanitize_for_logging(safe_name)}, size: {len(content) / 1024:.2f}KB")
    return safe_name, decode_text(content)
