"""Pydantic models shared by the services."""

from ticket_engine.models.attachment import (  # noqa: F401
    FileRejectionReason,
    FileValidationResult,
    StoredFile,
    TicketAttachment,
)
from ticket_engine.models.email import (  # noqa: F401
    EmailIngestion,
    EmailIngestionPage,
    EmailProcessingResult,
    InboundEmail,
)
from ticket_engine.models.principal import Principal, Role, UserAccount  # noqa: F401
from ticket_engine.models.ticket import (  # noqa: F401
    Priority,
    Ticket,
    TicketComment,
    TicketStatus,
    TicketUpdate,
)
