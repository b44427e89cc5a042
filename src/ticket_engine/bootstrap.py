"""
Service wiring.

Builds the services over either in-memory repositories (tests, local runs)
or SQL repositories on a pooled SQLAlchemy engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url

from ticket_engine.config.settings import Settings, build_blob_store
from ticket_engine.repositories import memory, sql_repo
from ticket_engine.services.attachment_service import AttachmentService
from ticket_engine.services.email_ingestion import EmailIngestionService
from ticket_engine.services.file_storage import FileStorageService
from ticket_engine.services.file_validation import FileValidationService
from ticket_engine.services.ticket_service import TicketService
from ticket_engine.utils.clock import SystemClock
from ticket_engine.utils.logging_config import get_logger

logger = get_logger(__name__)

_engine: Optional[Engine] = None


def get_db_engine(database_url: str) -> Engine:
    """Get or create the SQLAlchemy engine, reused across calls."""
    global _engine
    if _engine is None:
        url = make_url(database_url)
        if url.drivername.startswith("sqlite"):
            if url.database and url.database != ":memory:":
                Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
            _engine = create_engine(database_url, connect_args={"check_same_thread": False})
        else:
            _engine = create_engine(
                database_url,
                pool_size=1,
                max_overflow=2,
                pool_pre_ping=True,
                pool_recycle=300,
            )
    return _engine


@dataclass
class TicketEngine:
    """The assembled services."""

    tickets: TicketService
    attachments: AttachmentService
    emails: EmailIngestionService
    storage: FileStorageService
    validator: FileValidationService


def _assemble(settings: Settings, repos, blob_store, clock) -> TicketEngine:
    ticket_repo, comment_repo, attachment_repo, email_repo, user_repo = repos
    storage = FileStorageService(blob_store, max_name_attempts=settings.storage_name_max_attempts)
    validator = FileValidationService(max_file_size_bytes=settings.max_upload_bytes)
    ticket_service = TicketService(
        ticket_repo,
        comment_repo,
        clock,
        storage=storage,
        edit_window=timedelta(hours=settings.edit_window_hours),
    )
    return TicketEngine(
        tickets=ticket_service,
        attachments=AttachmentService(
            ticket_repo,
            attachment_repo,
            storage,
            validator,
            clock,
            token_ttl=timedelta(days=settings.download_token_ttl_days),
        ),
        emails=EmailIngestionService(email_repo, user_repo, ticket_service, clock),
        storage=storage,
        validator=validator,
    )


def build_in_memory(settings: Optional[Settings] = None, blob_store=None, clock=None) -> TicketEngine:
    settings = settings or Settings.from_environment()
    db = memory.InMemoryDatabase()
    repos = (
        memory.InMemoryTicketRepository(db),
        memory.InMemoryCommentRepository(db),
        memory.InMemoryAttachmentRepository(db),
        memory.InMemoryEmailIngestionRepository(db),
        memory.InMemoryUserRepository(db),
    )
    return _assemble(settings, repos, blob_store or build_blob_store(settings), clock or SystemClock())


def build_sql(
    settings: Optional[Settings] = None, engine: Optional[Engine] = None, blob_store=None, clock=None
) -> TicketEngine:
    settings = settings or Settings.from_environment()
    engine = engine or get_db_engine(settings.database_url)
    repos = (
        sql_repo.SqlTicketRepository(engine),
        sql_repo.SqlCommentRepository(engine),
        sql_repo.SqlAttachmentRepository(engine),
        sql_repo.SqlEmailIngestionRepository(engine),
        sql_repo.SqlUserRepository(engine),
    )
    logger.info("SQL repositories ready", extra={"environment": settings.environment})
    return _assemble(settings, repos, blob_store or build_blob_store(settings), clock or SystemClock())
