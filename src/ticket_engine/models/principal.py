"""Caller identity and user account models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import FrozenSet

from pydantic import BaseModel, Field

from ticket_engine.utils.clock import utcnow


class Role(str, Enum):
    """Roles observed by the authorization policies."""

    ADMIN = "Admin"
    AGENT = "Agent"
    CUSTOMER = "Customer"


class Principal(BaseModel):
    """Authenticated caller as supplied by the authentication layer."""

    user_id: str
    roles: FrozenSet[Role] = Field(default_factory=frozenset)

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_staff(self) -> bool:
        """Admins and agents."""
        return Role.ADMIN in self.roles or Role.AGENT in self.roles


class UserAccount(BaseModel):
    """Minimal account record used to resolve email senders to customers."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    email: str
    first_name: str = ""
    last_name: str = ""
    roles: FrozenSet[Role] = Field(default_factory=frozenset)
    email_confirmed: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
