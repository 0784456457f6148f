import threading
import time

import pytest

from psalm_supervisor.errors import ConfigurationError, SpawnError
from psalm_supervisor.logging_service import LoggingService
from psalm_supervisor.notifications import Notifier
from psalm_supervisor.state import ServerState
from psalm_supervisor.supervisor import ServerSupervisor
from tests.fakes import FakeLauncher, FakeWatchFactory, error_lines


def _record_states(supervisor: ServerSupervisor) -> list[ServerState]:
    states: list[ServerState] = []
    supervisor.add_state_listener(states.append)
    return states


def test_start_spawns_bound_to_workspace_and_config(supervisor: ServerSupervisor, launcher: FakeLauncher) -> None:
    states = _record_states(supervisor)

    assert supervisor.start().result(5) is ServerState.RUNNING

    assert len(launcher.processes) == 1
    process = launcher.processes[0]
    assert (process.workspace_root, process.config_path) == ("/repo", "/repo/psalm.xml")
    assert states == [ServerState.STARTING, ServerState.RUNNING]
    assert supervisor.pid == process.pid


def test_start_when_running_is_a_no_op(supervisor: ServerSupervisor, launcher: FakeLauncher) -> None:
    supervisor.start().result(5)
    assert supervisor.start().result(5) is ServerState.RUNNING
    assert len(launcher.processes) == 1


def test_start_without_config_is_refused(launcher: FakeLauncher, logging_service: LoggingService, notifier: Notifier) -> None:
    sup = ServerSupervisor(launcher, logging_service, notifier=notifier, workspace_root="/repo", config_path=None)
    try:
        assert sup.start().result(5) is ServerState.STOPPED
        assert isinstance(sup.last_error, ConfigurationError)
        assert launcher.processes == []
        assert len(error_lines(logging_service)) == 1
        assert len(notifier.messages()) == 1
    finally:
        sup.shutdown(timeout=5)


def test_start_without_workspace_is_refused(launcher: FakeLauncher, logging_service: LoggingService) -> None:
    sup = ServerSupervisor(launcher, logging_service, workspace_root=None, config_path="/repo/psalm.xml")
    try:
        assert sup.start().result(5) is ServerState.STOPPED
        assert launcher.processes == []
    finally:
        sup.shutdown(timeout=5)


def test_spawn_error_returns_to_stopped(supervisor: ServerSupervisor, launcher: FakeLauncher, logging_service: LoggingService) -> None:
    launcher.spawn_error = SpawnError("Failed to launch php: No such file or directory")
    states = _record_states(supervisor)

    assert supervisor.start().result(5) is ServerState.STOPPED

    assert states == [ServerState.STARTING, ServerState.STOPPED]
    assert isinstance(supervisor.last_error, SpawnError)
    assert "Failed to launch php" in error_lines(logging_service)[0]


def test_process_exiting_during_startup_is_a_spawn_failure(supervisor: ServerSupervisor, launcher: FakeLauncher) -> None:
    launcher.ready = False
    assert supervisor.start().result(5) is ServerState.STOPPED
    assert isinstance(supervisor.last_error, SpawnError)
    assert supervisor.pid is None


def test_stop_is_idempotent(supervisor: ServerSupervisor, logging_service: LoggingService) -> None:
    assert supervisor.stop().result(5) is ServerState.STOPPED
    assert supervisor.stop().result(5) is ServerState.STOPPED
    assert not any("Stopping" in line or "stopped" in line for line in logging_service.lines())


def test_stop_shuts_down_gracefully(supervisor: ServerSupervisor, launcher: FakeLauncher) -> None:
    supervisor.start().result(5)
    states = _record_states(supervisor)

    assert supervisor.stop().result(5) is ServerState.STOPPED

    process = launcher.processes[0]
    assert process.shutdown_requested
    assert not process.killed
    assert states == [ServerState.STOPPING, ServerState.STOPPED]


def test_unacknowledged_shutdown_escalates_to_kill(
    supervisor: ServerSupervisor, launcher: FakeLauncher, logging_service: LoggingService
) -> None:
    launcher.graceful = False
    supervisor.start().result(5)

    assert supervisor.stop().result(5) is ServerState.STOPPED

    assert launcher.processes[0].killed
    warnings = [line for line in logging_service.lines() if line.startswith("[WARN")]
    assert any("forcing termination" in line for line in warnings)
    assert error_lines(logging_service) == []


def test_restart_never_exposes_stopped(supervisor: ServerSupervisor, launcher: FakeLauncher) -> None:
    supervisor.start().result(5)
    states = _record_states(supervisor)

    assert supervisor.restart().result(5) is ServerState.RUNNING

    assert states == [ServerState.RESTARTING, ServerState.STARTING, ServerState.RUNNING]
    assert len(launcher.alive()) == 1
    assert launcher.alive()[0] is launcher.processes[-1]


def test_restart_from_stopped_starts(supervisor: ServerSupervisor, launcher: FakeLauncher) -> None:
    assert supervisor.restart().result(5) is ServerState.RUNNING
    assert len(launcher.alive()) == 1


def test_rapid_restarts_leave_one_process_with_latest_config(supervisor: ServerSupervisor, launcher: FakeLauncher) -> None:
    gate = threading.Event()
    launcher.spawn_gate = gate
    first = supervisor.start()

    supervisor.restart()
    supervisor.set_config_path("/repo/psalm.xml.dist")
    last = supervisor.restart()
    gate.set()

    first.result(5)
    assert last.result(5) is ServerState.RUNNING

    # start + the second restart; the superseded restart only tore down
    assert len(launcher.processes) == 2
    alive = launcher.alive()
    assert len(alive) == 1
    assert alive[0].config_path == "/repo/psalm.xml.dist"
    assert launcher.processes[0].shutdown_requested


def test_set_paths_do_not_restart(supervisor: ServerSupervisor, launcher: FakeLauncher) -> None:
    supervisor.start().result(5)
    supervisor.set_workspace_path("/other")
    supervisor.set_config_path("/other/psalm.xml")
    supervisor.flush(5)

    assert len(launcher.processes) == 1
    assert supervisor.state is ServerState.RUNNING
    assert (supervisor.workspace_root, supervisor.config_path) == ("/other", "/other/psalm.xml")


def test_crash_is_reported_and_not_restarted(
    supervisor: ServerSupervisor, launcher: FakeLauncher, logging_service: LoggingService, notifier: Notifier
) -> None:
    supervisor.start().result(5)

    launcher.processes[0].crash(139)
    assert supervisor.flush(5) is ServerState.STOPPED

    assert len(launcher.processes) == 1
    assert any("crashed" in line for line in error_lines(logging_service))
    assert len(notifier.messages()) == 1


def test_expected_exit_is_not_reported_as_crash(supervisor: ServerSupervisor, logging_service: LoggingService) -> None:
    supervisor.start().result(5)
    supervisor.restart().result(5)
    supervisor.flush(5)

    assert supervisor.state is ServerState.RUNNING
    assert error_lines(logging_service) == []


def test_rebind_watch_disposes_before_creating(supervisor: ServerSupervisor, watches: FakeWatchFactory) -> None:
    listener = lambda kind, path: None  # noqa: E731
    supervisor.rebind_watch("/a/psalm.xml", listener)
    supervisor.rebind_watch("/b/psalm.xml", listener)

    assert watches.events == [("create", "/a/psalm.xml"), ("dispose", "/a/psalm.xml"), ("create", "/b/psalm.xml")]
    assert watches.active_paths() == ["/b/psalm.xml"]
    assert supervisor.watched_path == "/b/psalm.xml"


def test_shutdown_stops_everything(
    launcher: FakeLauncher, logging_service: LoggingService, watches: FakeWatchFactory
) -> None:
    sup = ServerSupervisor(launcher, logging_service, watch_factory=watches, workspace_root="/repo", config_path="/repo/psalm.xml")
    sup.rebind_watch("/repo/psalm.xml", lambda kind, path: None)
    sup.start().result(5)

    sup.shutdown(timeout=5)

    assert launcher.alive() == []
    assert watches.active() == []
    assert sup.state is ServerState.STOPPED
    # requests after shutdown are ignored rather than raising
    assert sup.restart().result(1) is ServerState.STOPPED


def test_describe(supervisor: ServerSupervisor) -> None:
    supervisor.start().result(5)
    info = supervisor.describe()
    assert info["state"] == "running"
    assert info["config_path"] == "/repo/psalm.xml"
    assert info["start_count"] == 1
    assert info["pid"] is not None


def test_concurrent_restarts_queue_in_request_order(
    supervisor: ServerSupervisor, launcher: FakeLauncher, monkeypatch: pytest.MonkeyPatch
) -> None:
    supervisor.start().result(5)
    submit = supervisor._submit
    first_restart_submitting = threading.Event()

    def slow_submit(fn, *args):
        # hold up the first restart between taking its generation and queueing it
        if fn == supervisor._do_restart and not first_restart_submitting.is_set():
            first_restart_submitting.set()
            time.sleep(0.3)
        return submit(fn, *args)

    monkeypatch.setattr(supervisor, "_submit", slow_submit)
    futures: list = []
    first = threading.Thread(target=lambda: futures.append(supervisor.restart()))
    first.start()
    assert first_restart_submitting.wait(5)
    futures.append(supervisor.restart())
    first.join(5)

    for future in futures:
        future.result(5)
    assert supervisor.flush(5) is ServerState.RUNNING
    assert len(launcher.alive()) == 1
    assert launcher.alive()[0] is launcher.processes[-1]
