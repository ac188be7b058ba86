"""
Shared fixtures. Lifecycle tests run against ``FakeRuntime`` so no Docker
daemon is needed; see ``test_docker_integration.py`` for the real thing.
"""

from datetime import datetime, timedelta, timezone

import pytest

from container_modules.models import ContainerState
from container_modules.settings import AppSettings
from tests.fakes import FakeRuntime


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        STARTUP_TIMEOUT=3.0,
        HTTP_POLL_INTERVAL=0.01,
        HTTP_REQUEST_TIMEOUT=0.2,
        HEALTH_POLL_INTERVAL=0.01,
    )


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def state() -> ContainerState:
    return ContainerState(
        id="c0ffee" * 10,
        host="localhost",
        ports={"9092/tcp": 49153, "8080/tcp": 49154},
        started_at=datetime.now(timezone.utc) - timedelta(seconds=1),
    )
