"""
Attachment byte storage tests: opaque names, tokens, collisions, backends.

Run with: pytest tests/unit/test_file_storage.py -v
"""

import io
import re
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from helpers import PNG_BYTES, START
from ticket_engine.models.attachment import TicketAttachment
from ticket_engine.repositories.local_files import LocalBlobStore, is_stored_name
from ticket_engine.repositories.s3_repo import S3BlobStore
from ticket_engine.services.file_storage import (
    FileStorageService,
    generate_download_token,
    generate_storage_name,
)
from ticket_engine.utils.error_handling import ConflictError, StorageFailureError


def _client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _InterruptedStream(io.BytesIO):
    """Returns the first chunk, then fails as a dropped connection would."""

    def __init__(self, data: bytes):
        super().__init__(data)
        self.reads = 0

    def read(self, size=-1):
        self.reads += 1
        if self.reads > 1:
            raise OSError("connection reset")
        return super().read(size)


def _attachment(**overrides) -> TicketAttachment:
    fields = {
        "ticket_id": "t-1",
        "uploaded_by_id": "cust-1",
        "original_file_name": "scan.png",
        "stored_file_name": "1700000000_" + "a" * 32 + ".png",
        "content_type": "image/png",
        "file_size_bytes": 10,
        "download_token": "known-token",
        "token_expires_at": START + timedelta(days=7),
    }
    fields.update(overrides)
    return TicketAttachment(**fields)


class TestStorageNames:
    def test_traversal_name_never_reaches_storage(self, blob_store):
        service = FileStorageService(blob_store)
        stored = service.store(io.BytesIO(PNG_BYTES), "../../evil.png", "image/png", "cust-1")

        name = stored.stored_file_name
        assert "/" not in name and "\\" not in name
        assert "evil" not in name
        assert name.endswith(".png")
        assert is_stored_name(name)
        assert list(blob_store.root.iterdir()) == [blob_store.root / name]

    def test_unsafe_extension_dropped(self):
        name = generate_storage_name("report.p/df")
        assert "." not in name

    def test_names_are_unique(self):
        assert generate_storage_name("a.pdf") != generate_storage_name("a.pdf")

    def test_full_stream_written(self, blob_store):
        service = FileStorageService(blob_store)
        stored = service.store(io.BytesIO(PNG_BYTES), "a.png", "image/png", "cust-1")
        with service.retrieve(stored.stored_file_name) as handle:
            assert handle.read() == PNG_BYTES


class TestCollisions:
    def test_existing_name_regenerated(self):
        store = MagicMock()
        store.exists.side_effect = [True, False]
        stored = FileStorageService(store).store(io.BytesIO(PNG_BYTES), "a.png", "image/png", "u")
        assert store.exists.call_count == 2
        store.write.assert_called_once()
        assert store.write.call_args.args[0] == stored.stored_file_name

    def test_lost_race_regenerated_and_stream_rewound(self):
        store = MagicMock()
        store.exists.return_value = False
        positions = []

        def write(name, stream):
            positions.append(stream.tell())
            stream.read()
            if len(positions) == 1:
                raise FileExistsError(name)

        store.write.side_effect = write
        FileStorageService(store).store(io.BytesIO(PNG_BYTES), "a.png", "image/png", "u")
        assert positions == [0, 0]

    def test_exhausted_attempts_conflict(self):
        store = MagicMock()
        store.exists.return_value = True
        with pytest.raises(ConflictError):
            FileStorageService(store, max_name_attempts=3).store(
                io.BytesIO(PNG_BYTES), "a.png", "image/png", "u"
            )
        assert store.exists.call_count == 3
        store.write.assert_not_called()

    def test_backend_error_becomes_storage_failure(self):
        store = MagicMock()
        store.exists.return_value = False
        store.write.side_effect = OSError("No space left on device")
        with pytest.raises(StorageFailureError) as exc_info:
            FileStorageService(store).store(io.BytesIO(PNG_BYTES), "a.png", "image/png", "u")
        assert "No space" not in str(exc_info.value)


class TestRetrieveAndDelete:
    def test_retrieve_missing_returns_none(self, blob_store):
        assert FileStorageService(blob_store).retrieve("1700000000_" + "b" * 32 + ".pdf") is None

    @pytest.mark.parametrize("name", ["../secrets.txt", "/etc/passwd", "..", ""])
    def test_caller_paths_not_interpreted(self, blob_store, name):
        service = FileStorageService(blob_store)
        assert service.retrieve(name) is None
        assert service.delete(name) is False

    def test_delete_is_idempotent(self, blob_store):
        service = FileStorageService(blob_store)
        stored = service.store(io.BytesIO(PNG_BYTES), "a.png", "image/png", "u")
        assert service.delete(stored.stored_file_name) is True
        assert service.delete(stored.stored_file_name) is False


class TestTokens:
    def test_token_shape(self):
        token = generate_download_token()
        assert len(token) == 43
        assert re.fullmatch(r"[A-Za-z0-9_-]+", token)

    def test_tokens_differ(self):
        assert len({generate_download_token() for _ in range(50)}) == 50

    def test_download_url(self):
        url = FileStorageService.get_secure_download_url("tok", "att-1")
        assert url == "/api/attachments/download/att-1?token=tok"


class TestVerifyDownload:
    def test_matching_unexpired_token(self):
        assert FileStorageService.verify_download(_attachment(), "known-token", START).allowed

    def test_wrong_token(self):
        decision = FileStorageService.verify_download(_attachment(), "known-tokeN", START)
        assert not decision.allowed
        assert decision.reason == "invalid_token"

    def test_missing_token(self):
        assert not FileStorageService.verify_download(_attachment(), None, START).allowed

    def test_expired_token_denied_even_when_matching(self):
        attachment = _attachment(token_expires_at=START - timedelta(seconds=1))
        decision = FileStorageService.verify_download(attachment, "known-token", START)
        assert not decision.allowed
        assert decision.reason == "token_expired"

    def test_no_expiry_never_expires(self):
        attachment = _attachment(token_expires_at=None)
        later = START + timedelta(days=3650)
        assert FileStorageService.verify_download(attachment, "known-token", later).allowed


class TestLocalBlobStore:
    def test_write_refuses_overwrite(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        name = "1700000000_" + "c" * 32 + ".pdf"
        store.write(name, io.BytesIO(b"first"))
        with pytest.raises(FileExistsError):
            store.write(name, io.BytesIO(b"second"))
        with store.open(name) as handle:
            assert handle.read() == b"first"

    def test_write_refuses_non_opaque_name(self, tmp_path):
        with pytest.raises(ValueError):
            LocalBlobStore(tmp_path).write("../escape.png", io.BytesIO(b"x"))

    def test_interrupted_write_leaves_no_partial_file(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        name = "1700000000_" + "d" * 32 + ".png"
        with pytest.raises(OSError):
            store.write(name, _InterruptedStream(PNG_BYTES))
        assert not store.exists(name)
        assert list(tmp_path.iterdir()) == []

    def test_interrupted_store_is_storage_failure(self, blob_store):
        service = FileStorageService(blob_store)
        with pytest.raises(StorageFailureError):
            service.store(_InterruptedStream(PNG_BYTES), "scan.png", "image/png", "cust-1")
        assert list(blob_store.root.iterdir()) == []


class TestS3BlobStore:
    """S3 backend against a mocked boto3 client."""

    NAME = "1700000000_" + "d" * 32 + ".png"

    def _store(self):
        client = MagicMock()
        return S3BlobStore("bucket", prefix="attachments/", client=client), client

    def test_exists_false_on_404(self):
        store, client = self._store()
        client.head_object.side_effect = _client_error("404")
        assert store.exists(self.NAME) is False
        client.head_object.assert_called_once_with(
            Bucket="bucket", Key=f"attachments/{self.NAME}"
        )

    def test_exists_reraises_other_errors(self):
        store, client = self._store()
        client.head_object.side_effect = _client_error("AccessDenied")
        with pytest.raises(ClientError):
            store.exists(self.NAME)

    def test_write_is_conditional(self):
        store, client = self._store()
        store.write(self.NAME, io.BytesIO(PNG_BYTES))
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["IfNoneMatch"] == "*"
        assert kwargs["Body"] == PNG_BYTES

    def test_write_precondition_failed_is_collision(self):
        store, client = self._store()
        client.put_object.side_effect = _client_error("PreconditionFailed", "PutObject")
        with pytest.raises(FileExistsError):
            store.write(self.NAME, io.BytesIO(PNG_BYTES))

    def test_open_missing_returns_none(self):
        store, client = self._store()
        client.get_object.side_effect = _client_error("NoSuchKey", "GetObject")
        assert store.open(self.NAME) is None

    def test_delete_missing_returns_false(self):
        store, client = self._store()
        client.head_object.side_effect = _client_error("404")
        assert store.delete(self.NAME) is False
        client.delete_object.assert_not_called()

    def test_non_opaque_key_never_sent(self):
        store, client = self._store()
        assert store.open("../../etc/passwd") is None
        client.get_object.assert_not_called()

    def test_service_maps_client_errors(self):
        store, client = self._store()
        client.get_object.side_effect = _client_error("InternalError", "GetObject")
        with pytest.raises(StorageFailureError):
            FileStorageService(store).retrieve(self.NAME)
