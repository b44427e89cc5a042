"""
SQL repositories using SQLAlchemy Core.

Works against PostgreSQL in deployment and SQLite in tests. Uniqueness of
``message_id``, ``download_token`` and user email is enforced by the
schema; optimistic concurrency uses the ``version`` column.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ticket_engine.models.attachment import TicketAttachment
from ticket_engine.models.email import EmailIngestion
from ticket_engine.models.principal import Role, UserAccount
from ticket_engine.models.ticket import Ticket, TicketComment
from ticket_engine.utils.clock import as_utc
from ticket_engine.utils.error_handling import ConflictError, StorageFailureError
from ticket_engine.utils.logging_config import get_logger

logger = get_logger(__name__)

metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False, default=""),
    Column("last_name", String(100), nullable=False, default=""),
    Column("roles", String(255), nullable=False, default=""),
    Column("email_confirmed", Boolean, nullable=False, default=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

tickets_table = Table(
    "tickets",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("title", String(200), nullable=False),
    Column("description", Text, nullable=False),
    Column("category", String(100), nullable=False, default=""),
    Column("status", String(32), nullable=False),
    Column("priority", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True)),
    Column("customer_id", String(64), index=True),
    Column("assignee_id", String(64)),
    Column("version", Integer, nullable=False, default=1),
)

comments_table = Table(
    "ticket_comments",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("ticket_id", String(64), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
    Column("author_id", String(64), nullable=False),
    Column("body", Text, nullable=False),
    Column("is_internal", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

attachments_table = Table(
    "ticket_attachments",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("ticket_id", String(64), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
    Column("uploaded_by_id", String(64), nullable=False),
    Column("original_file_name", String(255), nullable=False),
    Column("stored_file_name", String(255), nullable=False, unique=True),
    Column("content_type", String(100), nullable=False),
    Column("file_size_bytes", Integer, nullable=False),
    Column("uploaded_at", DateTime(timezone=True), nullable=False),
    Column("download_token", String(64), nullable=False, unique=True),
    Column("token_expires_at", DateTime(timezone=True)),
)

email_ingestions_table = Table(
    "email_ingestions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("message_id", String(998), nullable=False, unique=True),
    Column("subject", String(500), nullable=False),
    Column("original_body", Text, nullable=False),
    Column("processed_body", Text, nullable=False),
    Column("from_email", String(255), nullable=False),
    Column("from_name", String(255)),
    Column("received_at", DateTime(timezone=True), nullable=False),
    Column("processed_at", DateTime(timezone=True)),
    Column("is_processed", Boolean, nullable=False, default=False),
    Column("processing_error", Text),
    Column(
        "created_ticket_id", String(64), ForeignKey("tickets.id", ondelete="SET NULL")
    ),
    Column("claimed_at", DateTime(timezone=True)),
    Column("version", Integer, nullable=False, default=1),
)


class SqlRepository:
    """Thin wrapper to keep SQL organized and parameterized.

    Unique violations surface as ConflictError; any other database error is
    logged and surfaces as StorageFailureError.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def _failure(self, exc: SQLAlchemyError) -> StorageFailureError:
        # Statement parameters can carry message bodies; log the error type only.
        logger.error(
            "Database error",
            extra={"repository": type(self).__name__, "error": type(exc).__name__},
        )
        return StorageFailureError("Database error.")

    def fetch_one(self, stmt) -> Optional[dict]:
        """Execute a SELECT and return one row as dict."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).fetchone()
                return dict(row._mapping) if row else None
        except SQLAlchemyError as exc:
            raise self._failure(exc) from exc

    def fetch_all(self, stmt) -> List[dict]:
        try:
            with self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(stmt)]
        except SQLAlchemyError as exc:
            raise self._failure(exc) from exc

    def execute(self, stmt, conflict_message: str = "Duplicate record") -> int:
        """Execute a statement in its own transaction and return the affected row count."""
        try:
            with self.engine.begin() as conn:
                return conn.execute(stmt).rowcount
        except IntegrityError as exc:
            raise ConflictError(conflict_message) from exc
        except SQLAlchemyError as exc:
            raise self._failure(exc) from exc


def _ticket_from_row(row: dict) -> Ticket:
    row = dict(row)
    row["created_at"] = as_utc(row["created_at"])
    row["updated_at"] = as_utc(row["updated_at"])
    row["category"] = row.get("category") or ""
    return Ticket.model_validate(row)


class SqlTicketRepository(SqlRepository):
    def get(self, ticket_id: str) -> Optional[Ticket]:
        row = self.fetch_one(select(tickets_table).where(tickets_table.c.id == ticket_id))
        return _ticket_from_row(row) if row else None

    def add(self, ticket: Ticket) -> Ticket:
        values = ticket.model_dump(mode="python")
        values["status"] = ticket.status.value
        values["priority"] = ticket.priority.value
        values["version"] = 1
        self.execute(insert(tickets_table).values(**values), f"Ticket {ticket.id} already exists")
        return ticket.model_copy(update={"version": 1})

    def save(self, ticket: Ticket, expected_version: int) -> Ticket:
        stmt = (
            update(tickets_table)
            .where(tickets_table.c.id == ticket.id)
            .where(tickets_table.c.version == expected_version)
            .values(
                title=ticket.title,
                description=ticket.description,
                category=ticket.category,
                status=ticket.status.value,
                priority=ticket.priority.value,
                updated_at=ticket.updated_at,
                customer_id=ticket.customer_id,
                assignee_id=ticket.assignee_id,
                version=expected_version + 1,
            )
        )
        if self.execute(stmt) == 0:
            raise ConflictError(f"Ticket {ticket.id} was modified concurrently")
        return ticket.model_copy(update={"version": expected_version + 1})

    def delete(self, ticket_id: str) -> List[TicketAttachment]:
        # Explicit cascade: SQLite does not enforce ON DELETE without a pragma.
        try:
            with self.engine.begin() as conn:
                rows = conn.execute(
                    select(attachments_table).where(attachments_table.c.ticket_id == ticket_id)
                ).fetchall()
                conn.execute(
                    update(email_ingestions_table)
                    .where(email_ingestions_table.c.created_ticket_id == ticket_id)
                    .values(created_ticket_id=None)
                )
                conn.execute(delete(comments_table).where(comments_table.c.ticket_id == ticket_id))
                conn.execute(
                    delete(attachments_table).where(attachments_table.c.ticket_id == ticket_id)
                )
                conn.execute(delete(tickets_table).where(tickets_table.c.id == ticket_id))
        except SQLAlchemyError as exc:
            raise self._failure(exc) from exc
        return [_attachment_from_row(dict(row._mapping)) for row in rows]


class SqlCommentRepository(SqlRepository):
    def add(self, comment: TicketComment) -> TicketComment:
        self.execute(insert(comments_table).values(**comment.model_dump()))
        return comment

    def list_for_ticket(self, ticket_id: str) -> List[TicketComment]:
        rows = self.fetch_all(
            select(comments_table)
            .where(comments_table.c.ticket_id == ticket_id)
            .order_by(comments_table.c.created_at)
        )
        return [
            TicketComment.model_validate({**row, "created_at": as_utc(row["created_at"])})
            for row in rows
        ]


def _attachment_from_row(row: dict) -> TicketAttachment:
    row["uploaded_at"] = as_utc(row["uploaded_at"])
    row["token_expires_at"] = as_utc(row["token_expires_at"])
    return TicketAttachment.model_validate(row)


class SqlAttachmentRepository(SqlRepository):
    def get(self, attachment_id: str) -> Optional[TicketAttachment]:
        row = self.fetch_one(
            select(attachments_table).where(attachments_table.c.id == attachment_id)
        )
        return _attachment_from_row(row) if row else None

    def add(self, attachment: TicketAttachment) -> TicketAttachment:
        self.execute(
            insert(attachments_table).values(**attachment.model_dump()),
            "Attachment token or storage name already in use",
        )
        return attachment

    def update(self, attachment: TicketAttachment) -> TicketAttachment:
        values = attachment.model_dump()
        values.pop("id")
        updated = self.execute(
            update(attachments_table)
            .where(attachments_table.c.id == attachment.id)
            .values(**values),
            "Download token already in use",
        )
        if updated == 0:
            raise ConflictError(f"Attachment {attachment.id} no longer exists")
        return attachment

    def delete(self, attachment_id: str) -> bool:
        deleted = self.execute(
            delete(attachments_table).where(attachments_table.c.id == attachment_id)
        )
        return deleted > 0

    def list_for_ticket(self, ticket_id: str) -> List[TicketAttachment]:
        rows = self.fetch_all(
            select(attachments_table)
            .where(attachments_table.c.ticket_id == ticket_id)
            .order_by(attachments_table.c.uploaded_at.desc())
        )
        return [_attachment_from_row(row) for row in rows]


def _ingestion_from_row(row: dict) -> EmailIngestion:
    for column in ("received_at", "processed_at", "claimed_at"):
        row[column] = as_utc(row[column])
    return EmailIngestion.model_validate(row)


class SqlEmailIngestionRepository(SqlRepository):
    def get(self, ingestion_id: str) -> Optional[EmailIngestion]:
        row = self.fetch_one(
            select(email_ingestions_table).where(email_ingestions_table.c.id == ingestion_id)
        )
        return _ingestion_from_row(row) if row else None

    def get_by_message_id(self, message_id: str) -> Optional[EmailIngestion]:
        row = self.fetch_one(
            select(email_ingestions_table).where(
                email_ingestions_table.c.message_id == message_id
            )
        )
        return _ingestion_from_row(row) if row else None

    def add(self, ingestion: EmailIngestion) -> EmailIngestion:
        values = ingestion.model_dump()
        values["version"] = 1
        self.execute(
            insert(email_ingestions_table).values(**values),
            f"Message {ingestion.message_id} already ingested",
        )
        return ingestion.model_copy(update={"version": 1})

    def update(self, ingestion: EmailIngestion) -> EmailIngestion:
        values = ingestion.model_dump(exclude={"id", "message_id", "version"})
        self.execute(
            update(email_ingestions_table)
            .where(email_ingestions_table.c.id == ingestion.id)
            .values(**values)
        )
        return ingestion

    def claim(self, ingestion: EmailIngestion, expected_version: int) -> EmailIngestion:
        values = ingestion.model_dump(exclude={"id", "message_id", "version"})
        claimed = self.execute(
            update(email_ingestions_table)
            .where(email_ingestions_table.c.id == ingestion.id)
            .where(email_ingestions_table.c.version == expected_version)
            .values(version=expected_version + 1, **values)
        )
        if claimed == 0:
            raise ConflictError(f"Email ingestion {ingestion.id} was modified concurrently")
        return ingestion.model_copy(update={"version": expected_version + 1})

    def list_recent(self, offset: int, limit: int) -> Tuple[List[EmailIngestion], int]:
        try:
            with self.engine.connect() as conn:
                total = conn.execute(
                    select(func.count()).select_from(email_ingestions_table)
                ).scalar()
                rows = conn.execute(
                    select(email_ingestions_table)
                    .order_by(email_ingestions_table.c.received_at.desc())
                    .offset(offset)
                    .limit(limit)
                ).fetchall()
        except SQLAlchemyError as exc:
            raise self._failure(exc) from exc
        return [_ingestion_from_row(dict(row._mapping)) for row in rows], total or 0


def _user_from_row(row: dict) -> UserAccount:
    row["roles"] = frozenset(Role(r) for r in row["roles"].split(",") if r)
    row["created_at"] = as_utc(row["created_at"])
    return UserAccount.model_validate(row)


class SqlUserRepository(SqlRepository):
    def find_by_email(self, email: str) -> Optional[UserAccount]:
        row = self.fetch_one(
            select(users_table).where(func.lower(users_table.c.email) == email.strip().lower())
        )
        return _user_from_row(row) if row else None

    def add(self, user: UserAccount) -> UserAccount:
        values = user.model_dump()
        values["roles"] = ",".join(sorted(role.value for role in user.roles))
        self.execute(insert(users_table).values(**values), "Email already registered")
        return user
