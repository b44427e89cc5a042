"""
Environment-specific configuration settings.

Defaults suit local development; production values come from the
environment.
"""

from dataclasses import dataclass
import os

MIB = 1024 * 1024


@dataclass
class Settings:
    """Engine settings with safe defaults."""

    # Environment
    environment: str = "dev"
    aws_region: str = "eu-west-2"

    # Upload policy
    max_upload_bytes: int = 10 * MIB
    download_token_ttl_days: int = 7
    storage_name_max_attempts: int = 5

    # Customer self-service edit window
    edit_window_hours: int = 24

    # Attachment storage: "local" keeps bytes on disk outside any web root
    attachment_backend: str = "local"
    attachment_storage_path: str = "./data/attachments"
    attachment_bucket: str = "ticket-attachments"
    attachment_prefix: str = "attachments/"

    # Persistence
    database_url: str = "sqlite:///./data/tickets.db"

    @classmethod
    def from_environment(cls) -> "Settings":
        """Load settings from environment variables."""
        env = os.environ.get("ENVIRONMENT", "dev")
        backend = os.environ.get("ATTACHMENT_BACKEND", "s3" if env == "prod" else "local")

        return cls(
            environment=env,
            aws_region=os.environ.get("AWS_REGION", cls.aws_region),
            max_upload_bytes=int(os.environ.get("MAX_UPLOAD_BYTES", str(cls.max_upload_bytes))),
            download_token_ttl_days=int(
                os.environ.get("DOWNLOAD_TOKEN_TTL_DAYS", str(cls.download_token_ttl_days))
            ),
            storage_name_max_attempts=int(
                os.environ.get("STORAGE_NAME_MAX_ATTEMPTS", str(cls.storage_name_max_attempts))
            ),
            edit_window_hours=int(os.environ.get("EDIT_WINDOW_HOURS", str(cls.edit_window_hours))),
            attachment_backend=backend.lower(),
            attachment_storage_path=os.environ.get(
                "ATTACHMENT_STORAGE_PATH", cls.attachment_storage_path
            ),
            attachment_bucket=os.environ.get("ATTACHMENT_BUCKET", cls.attachment_bucket),
            attachment_prefix=os.environ.get("ATTACHMENT_PREFIX", cls.attachment_prefix),
            database_url=os.environ.get("DATABASE_URL", cls.database_url),
        )


def build_blob_store(settings: Settings):
    """Create the blob store selected by ``attachment_backend``."""
    if settings.attachment_backend == "s3":
        from ticket_engine.repositories.s3_repo import S3BlobStore

        return S3BlobStore(
            settings.attachment_bucket,
            prefix=settings.attachment_prefix,
            region=settings.aws_region,
        )
    if settings.attachment_backend == "local":
        from ticket_engine.repositories.local_files import LocalBlobStore

        return LocalBlobStore(settings.attachment_storage_path)
    raise ValueError(f"Unknown attachment backend: {settings.attachment_backend}")
