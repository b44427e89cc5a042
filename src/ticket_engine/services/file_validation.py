"""
Upload validation.

Declared metadata is never trusted on its own: the content type is always
confirmed from the file's leading bytes.
"""

from __future__ import annotations

import re
from typing import BinaryIO, Dict, Optional

from ticket_engine.models.attachment import FileRejectionReason, FileValidationResult
from ticket_engine.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024

MAGIC_BYTES: Dict[str, bytes] = {
    "image/png": bytes([0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A]),
    "image/jpeg": bytes([0xFF, 0xD8, 0xFF]),
    "application/pdf": bytes([0x25, 0x50, 0x44, 0x46]),
}

ALLOWED_EXTENSIONS = frozenset({".pdf", ".png", ".jpg", ".jpeg"})
ALLOWED_CONTENT_TYPES = frozenset({"application/pdf", "image/png", "image/jpeg", "image/jpg"})

HEADER_SIZE = max(len(signature) for signature in MAGIC_BYTES.values())
MIN_HEADER_SIZE = 3

_PATH_SEPARATORS = re.compile(r"[\\/]")


def file_extension(file_name: str) -> str:
    """Lower-cased extension (with dot) of the last path component, or ''."""
    base = _PATH_SEPARATORS.split(file_name or "")[-1]
    index = base.rfind(".")
    if index < 0:
        return ""
    return base[index:].lower()


def detect_content_type(header: bytes) -> Optional[str]:
    """Match ``header`` against the signature table."""
    for content_type, signature in MAGIC_BYTES.items():
        if header.startswith(signature):
            return content_type
    return None


class FileValidationService:
    """Checks size, extension, declared type and magic bytes, in that order."""

    def __init__(self, max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES):
        self.max_file_size_bytes = max_file_size_bytes

    def validate(
        self, stream: BinaryIO, file_name: str, content_type: str, file_size: int
    ) -> FileValidationResult:
        if file_size > self.max_file_size_bytes:
            return self._reject(
                FileRejectionReason.SIZE_EXCEEDED,
                f"File size {file_size:,} bytes exceeds maximum allowed size of "
                f"{self.max_file_size_bytes:,} bytes.",
            )

        extension = file_extension(file_name)
        if extension not in ALLOWED_EXTENSIONS:
            return self._reject(
                FileRejectionReason.EXTENSION_NOT_ALLOWED,
                f"File extension '{extension}' is not allowed. "
                f"Allowed extensions: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
            )

        declared = (content_type or "").strip().lower()
        if declared not in ALLOWED_CONTENT_TYPES:
            return self._reject(
                FileRejectionReason.CONTENT_TYPE_NOT_ALLOWED,
                f"Content type '{content_type}' is not allowed. "
                f"Allowed types: {', '.join(sorted(ALLOWED_CONTENT_TYPES))}",
            )

        try:
            header = self._read_header(stream)
        except (OSError, ValueError):
            logger.exception("Error reading upload header", extra={"extension": extension})
            return self._reject(FileRejectionReason.READ_ERROR, "Error reading file content.")

        if len(header) < MIN_HEADER_SIZE:
            return self._reject(
                FileRejectionReason.CONTENT_UNDETECTABLE, "File is too small to determine type."
            )

        detected = detect_content_type(header)
        if detected is None:
            return self._reject(
                FileRejectionReason.CONTENT_UNDETECTABLE,
                "File type could not be determined from content.",
            )

        if declared != detected:
            return self._reject(
                FileRejectionReason.CONTENT_TYPE_MISMATCH,
                f"Content type mismatch. Expected: {content_type}, Detected: {detected}",
            )

        return FileValidationResult(is_valid=True, detected_content_type=detected)

    @staticmethod
    def _read_header(stream: BinaryIO) -> bytes:
        """Read the signature prefix from offset 0, leaving the position as found."""
        original_position = stream.tell()
        try:
            stream.seek(0)
            return stream.read(HEADER_SIZE) or b""
        finally:
            stream.seek(original_position)

    @staticmethod
    def _reject(reason: FileRejectionReason, message: str) -> FileValidationResult:
        logger.info("Upload rejected", extra={"reason": reason.value})
        return FileValidationResult(is_valid=False, reason=reason, error_message=message)
