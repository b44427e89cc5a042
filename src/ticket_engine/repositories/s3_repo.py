"""S3 blob store for attachment bytes."""

from typing import BinaryIO, Optional

import boto3
from botocore.exceptions import ClientError

from ticket_engine.repositories.local_files import is_stored_name

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
_EXISTS_CODES = {"PreconditionFailed", "412", "ConditionalRequestConflict"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3BlobStore:
    """Minimal helper around S3 keyed by opaque storage names."""

    def __init__(self, bucket_name: str, prefix: str = "", region: Optional[str] = None, client=None):
        self.bucket_name = bucket_name
        self.prefix = prefix
        self.client = client or boto3.client("s3", region_name=region)

    def _key(self, name: str) -> Optional[str]:
        if not is_stored_name(name):
            return None
        return f"{self.prefix}{name}"

    def exists(self, name: str) -> bool:
        key = self._key(name)
        if key is None:
            return False
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return False
            raise
        return True

    def write(self, name: str, stream: BinaryIO) -> None:
        """Conditional put; an existing key surfaces as FileExistsError."""
        key = self._key(name)
        if key is None:
            raise ValueError("Refusing to write a non-opaque storage name")
        try:
            self.client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=stream.read(),
                IfNoneMatch="*",
                ServerSideEncryption="AES256",
            )
        except ClientError as exc:
            if _error_code(exc) in _EXISTS_CODES:
                raise FileExistsError(name) from exc
            raise

    def open(self, name: str) -> Optional[BinaryIO]:
        key = self._key(name)
        if key is None:
            return None
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return None
            raise
        return response["Body"]

    def delete(self, name: str) -> bool:
        """S3 deletes are silent for missing keys, so check first."""
        if not self.exists(name):
            return False
        self.client.delete_object(Bucket=self.bucket_name, Key=self._key(name))
        return True
