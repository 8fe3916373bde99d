"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import FakeConnector, FrozenClock  # noqa: E402

from formflow.config import Settings  # noqa: E402
from formflow.connectors import ConnectorRegistry  # noqa: E402
from formflow.events import EventBus  # noqa: E402
from formflow.models import Instance, Submission  # noqa: E402
from formflow.storage import FormflowStorage, InMemoryStorage  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    """Settings with no durable backend and default retry parameters."""
    return Settings(env="test", durable_backend="inprocess")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
async def memory_storage():
    async with InMemoryStorage() as storage:
        yield storage


@pytest.fixture
async def sql_storage(tmp_path):
    """SQLite-backed storage in a temporary file."""
    storage = FormflowStorage(url=f"sqlite+aiosqlite:///{tmp_path / 'formflow.sqlite'}")
    await storage.initialize()
    yield storage
    await storage.close()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def registry(connector: FakeConnector) -> ConnectorRegistry:
    registry = ConnectorRegistry()
    registry.register("intellisource", connector)
    return registry


@pytest.fixture
def instance() -> Instance:
    return Instance(
        id="ins_test",
        slug="peak-rewards",
        utility="Delmarva",
        api_endpoint="https://api.example.com",
        api_password="s3cret",
    )


@pytest.fixture
def submission(instance: Instance) -> Submission:
    return Submission(
        id="sub_test",
        instance_id=instance.id,
        form_data={
            "email": "john.doe@example.com",
            "account_number": "1234567890",
            "ca_no": "CA-77",
        },
        account_number="1234567890",
        customer_name="John Doe",
        device_type="thermostat",
    )
