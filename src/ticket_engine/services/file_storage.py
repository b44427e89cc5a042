"""
Attachment byte storage.

Storage names are generated here and never derived from the uploaded file
name beyond its extension, so user input cannot choose or traverse paths.
"""

from __future__ import annotations

import hmac
import re
import secrets
import time
import uuid
from datetime import datetime
from typing import BinaryIO, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ticket_engine.models.attachment import StoredFile, TicketAttachment
from ticket_engine.repositories.base import BlobStore
from ticket_engine.services.authorization import ATTACHMENT_DOWNLOAD, AuthorizationDecision
from ticket_engine.services.file_validation import file_extension
from ticket_engine.utils.error_handling import ConflictError, StorageFailureError
from ticket_engine.utils.logging_config import get_logger

logger = get_logger(__name__)

TOKEN_BYTES = 32
DEFAULT_MAX_NAME_ATTEMPTS = 5

_SAFE_EXTENSION = re.compile(r"^\.[a-z0-9]{1,10}$")
_BACKEND_ERRORS = (OSError, ClientError, BotoCoreError)


def generate_download_token() -> str:
    """32 random bytes, base64url without padding."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def generate_storage_name(original_file_name: str) -> str:
    """``<unix seconds>_<uuid4 hex><ext>``; the extension is kept only if purely alphanumeric."""
    extension = file_extension(original_file_name)
    if not _SAFE_EXTENSION.match(extension):
        extension = ""
    return f"{int(time.time())}_{uuid.uuid4().hex}{extension}"


class FileStorageService:
    """Writes, reads and deletes attachment bytes in a blob store."""

    def __init__(self, blob_store: BlobStore, max_name_attempts: int = DEFAULT_MAX_NAME_ATTEMPTS):
        self.blob_store = blob_store
        self.max_name_attempts = max_name_attempts

    def store(
        self,
        stream: BinaryIO,
        original_file_name: str,
        content_type: str,
        uploaded_by_id: str,
    ) -> StoredFile:
        """Write ``stream`` under a fresh opaque name and issue a download token."""
        start = stream.tell()
        for attempt in range(1, self.max_name_attempts + 1):
            stored_file_name = generate_storage_name(original_file_name)
            try:
                if self.blob_store.exists(stored_file_name):
                    continue
                self.blob_store.write(stored_file_name, stream)
            except FileExistsError:
                # Lost a race for the name; the backend may have consumed the stream.
                stream.seek(start)
                logger.warning("Storage name collision", extra={"attempt": attempt})
                continue
            except _BACKEND_ERRORS as exc:
                logger.error(
                    "Error storing file",
                    extra={
                        "uploaded_by_id": uploaded_by_id,
                        "content_type": content_type,
                        "error": str(exc),
                    },
                )
                raise StorageFailureError("Error storing file.") from exc

            logger.info(
                "File stored",
                extra={"stored_file_name": stored_file_name, "uploaded_by_id": uploaded_by_id},
            )
            return StoredFile(
                stored_file_name=stored_file_name,
                download_token=generate_download_token(),
            )

        raise ConflictError("Could not allocate a unique storage name.")

    def retrieve(self, stored_file_name: str) -> Optional[BinaryIO]:
        """Open stored bytes, or ``None`` when absent."""
        try:
            return self.blob_store.open(stored_file_name)
        except _BACKEND_ERRORS as exc:
            logger.error(
                "Error reading file",
                extra={"stored_file_name": stored_file_name, "error": str(exc)},
            )
            raise StorageFailureError("Error reading file.") from exc

    def delete(self, stored_file_name: str) -> bool:
        """Returns False when there was nothing to delete."""
        try:
            return self.blob_store.delete(stored_file_name)
        except _BACKEND_ERRORS as exc:
            logger.error(
                "Error deleting file",
                extra={"stored_file_name": stored_file_name, "error": str(exc)},
            )
            raise StorageFailureError("Error deleting file.") from exc

    @staticmethod
    def generate_download_token() -> str:
        return generate_download_token()

    @staticmethod
    def get_secure_download_url(token: str, attachment_id: str) -> str:
        return f"/api/attachments/download/{attachment_id}?token={token}"

    @staticmethod
    def verify_download(
        attachment: TicketAttachment, supplied_token: Optional[str], now: datetime
    ) -> AuthorizationDecision:
        """Token must match exactly and must not be expired."""
        if not supplied_token or not hmac.compare_digest(
            attachment.download_token.encode(), supplied_token.encode()
        ):
            return AuthorizationDecision.deny(ATTACHMENT_DOWNLOAD, "invalid_token")
        if attachment.token_expires_at is not None and attachment.token_expires_at <= now:
            return AuthorizationDecision.deny(ATTACHMENT_DOWNLOAD, "token_expired")
        return AuthorizationDecision.allow(ATTACHMENT_DOWNLOAD)
