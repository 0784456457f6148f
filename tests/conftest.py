import sys
from collections.abc import Iterator
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from psalm_supervisor.logging_service import LoggingService, LogLevel
from psalm_supervisor.notifications import Notifier
from psalm_supervisor.supervisor import ServerSupervisor
from tests.fakes import FakeLauncher, FakeWatchFactory


@pytest.fixture
def logging_service() -> LoggingService:
    return LoggingService(LogLevel.DEBUG)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def watches() -> FakeWatchFactory:
    return FakeWatchFactory()


@pytest.fixture
def supervisor(launcher: FakeLauncher, logging_service: LoggingService, notifier: Notifier, watches: FakeWatchFactory) -> Iterator[ServerSupervisor]:
    sup = ServerSupervisor(
        launcher,
        logging_service,
        notifier=notifier,
        watch_factory=watches,
        workspace_root="/repo",
        config_path="/repo/psalm.xml",
        startup_timeout=0.1,
        shutdown_timeout=0.1,
    )
    yield sup
    sup.shutdown(timeout=5)
