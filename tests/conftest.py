"""
Shared fixtures for the test suite.
"""

import pytest

from fleet_agent.core.notifications import NotificationBus
from fleet_agent.core.session import SessionResolver
from fleet_agent.gateway.service import RequestGateway
from fleet_agent.storage import initialize_storage
from fleet_agent.storage.repository import UsageRepository
from fleet_agent.storage.threads import ThreadRepository
from tests.fakes import FakeAgent


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "agent.db")
    initialize_storage(path)
    return path


@pytest.fixture
def threads(db_path):
    return ThreadRepository(db_path)


@pytest.fixture
def usage_repository(db_path):
    return UsageRepository(db_path)


@pytest.fixture
def fake_agent():
    return FakeAgent()


@pytest.fixture
def bus():
    return NotificationBus()


@pytest.fixture
def gateway(fake_agent, threads, usage_repository):
    return RequestGateway(
        agents={fake_agent.id: fake_agent},
        resolver=SessionResolver(threads),
        threads=threads,
        usage=usage_repository,
    )
