"""
Shared pytest fixtures.

Everything runs offline: in-memory repositories, a temp directory blob
store, a manually advanced clock and dummy AWS credentials so boto3 clients
can be constructed without touching AWS.
"""

import os

import boto3
import pytest

# Ensure boto3 has offline-friendly defaults so tests do not require AWS access.
os.environ.setdefault("AWS_REGION", "eu-west-2")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-2")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_SESSION_TOKEN", "test")
os.environ.setdefault("ENVIRONMENT", "dev")

boto3.setup_default_session(region_name="eu-west-2")

from helpers import ManualClock, make_ticket  # noqa: E402
from ticket_engine.bootstrap import build_in_memory  # noqa: E402
from ticket_engine.config.settings import Settings  # noqa: E402
from ticket_engine.models.principal import Principal, Role  # noqa: E402
from ticket_engine.repositories.local_files import LocalBlobStore  # noqa: E402


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(attachment_storage_path=str(tmp_path / "attachments"))


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "attachments")


@pytest.fixture
def engine(settings, blob_store, clock):
    """Fully wired services over in-memory repositories."""
    return build_in_memory(settings, blob_store=blob_store, clock=clock)


@pytest.fixture
def admin():
    return Principal(user_id="admin-1", roles=frozenset({Role.ADMIN}))


@pytest.fixture
def agent():
    return Principal(user_id="agent-1", roles=frozenset({Role.AGENT}))


@pytest.fixture
def other_agent():
    return Principal(user_id="agent-2", roles=frozenset({Role.AGENT}))


@pytest.fixture
def customer():
    return Principal(user_id="cust-1", roles=frozenset({Role.CUSTOMER}))


@pytest.fixture
def other_customer():
    return Principal(user_id="cust-2", roles=frozenset({Role.CUSTOMER}))


@pytest.fixture
def stored_ticket(engine):
    """A ticket owned by cust-1 and assigned to agent-1, persisted."""
    return engine.tickets.tickets.add(make_ticket())
