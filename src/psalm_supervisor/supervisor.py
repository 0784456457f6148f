"""
Lifecycle supervisor for the Psalm language server process.

Every lifecycle operation is a request placed on a single-worker transition queue,
so at most one transition touches the process at any time and a later request always
observes the complete effects of the earlier ones.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from psalm_supervisor.errors import ConfigurationError, ShutdownTimeout, SpawnError, SupervisorError
from psalm_supervisor.logging_service import LoggingService
from psalm_supervisor.notifications import Notifier
from psalm_supervisor.process import ServerLauncher, ServerProcess
from psalm_supervisor.state import ServerState
from psalm_supervisor.watch import WatchBinding, WatchFactory, WatchListener, create_file_watch

log = logging.getLogger(__name__)

StateListener = Callable[[ServerState], None]


class ServerSupervisor:
    """Owns the server process, its configuration and the config file watch.

    ``start``/``stop``/``restart``/``set_workspace_path``/``set_config_path`` return a
    :class:`~concurrent.futures.Future` that resolves to the state after the transition.
    Configuration and spawn errors are absorbed here: they are logged, shown to the user
    and leave the supervisor ``STOPPED``.
    """

    KILL_WAIT_SECONDS = 5.0

    def __init__(
        self,
        launcher: ServerLauncher,
        logging_service: LoggingService,
        notifier: Notifier | None = None,
        watch_factory: WatchFactory = create_file_watch,
        workspace_root: str | None = None,
        config_path: str | None = None,
        startup_timeout: float = 3.0,
        shutdown_timeout: float = 10.0,
    ) -> None:
        self._launcher = launcher
        self._logging = logging_service
        self._notifier = notifier
        self._watch_factory = watch_factory
        self._workspace_root = workspace_root
        self._config_path = config_path
        self._startup_timeout = startup_timeout
        self._shutdown_timeout = shutdown_timeout

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="psalm-supervisor")
        self._lock = threading.Lock()
        self._state = ServerState.STOPPED
        self._state_listeners: list[StateListener] = []
        self._process: ServerProcess | None = None
        self._restart_generation = 0
        self._start_count = 0
        self._closed = False
        self.last_error: SupervisorError | None = None

        self._watch_lock = threading.Lock()
        self._rebind_lock = threading.Lock()
        self._watch: WatchBinding | None = None

    # ─── Observable state ──────────────────────────────────────────────

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def workspace_root(self) -> str | None:
        return self._workspace_root

    @property
    def config_path(self) -> str | None:
        return self._config_path

    @property
    def watched_path(self) -> str | None:
        with self._watch_lock:
            return self._watch.path if self._watch is not None else None

    @property
    def pid(self) -> int | None:
        process = self._process
        return process.pid if process is not None else None

    def add_state_listener(self, listener: StateListener) -> None:
        with self._lock:
            self._state_listeners.append(listener)

    def describe(self) -> dict[str, Any]:
        process = self._process
        uptime = process.uptime if process is not None else None
        return {
            "state": self._state.value,
            "pid": process.pid if process is not None else None,
            "uptime_seconds": round(uptime, 1) if uptime is not None else None,
            "workspace_root": self._workspace_root,
            "config_path": self._config_path,
            "watched_path": self.watched_path,
            "start_count": self._start_count,
            "last_error": str(self.last_error) if self.last_error is not None else None,
        }

    # ─── Operations ────────────────────────────────────────────────────

    def start(self) -> "Future[ServerState]":
        return self._submit(self._do_start)

    def stop(self) -> "Future[ServerState]":
        return self._submit(self._do_stop)

    def restart(self) -> "Future[ServerState]":
        """Queue a stop-then-start.

        A newer restart request supersedes this one: the stop phase still runs, the start phase is skipped.
        """
        # generations must reach the queue in increasing order
        with self._lock:
            self._restart_generation += 1
            return self._submit(self._do_restart, self._restart_generation)

    def set_workspace_path(self, path: str) -> "Future[ServerState]":
        """Update the workspace root; takes effect on the next (re)start."""
        return self._submit(self._do_set_workspace_path, path)

    def set_config_path(self, path: str | None) -> "Future[ServerState]":
        """Update the config path; takes effect on the next (re)start."""
        return self._submit(self._do_set_config_path, path)

    def flush(self, timeout: float | None = None) -> ServerState:
        """Wait until every transition queued so far has been applied."""
        return self._submit(lambda: self._state).result(timeout)

    def rebind_watch(self, path: str | None, listener: WatchListener) -> WatchBinding | None:
        """Replace the config file watch.

        The previous watch is disposed before the new one is created, so events are never
        delivered by two watches at once. Passing ``None`` only disposes.
        """
        with self._rebind_lock:
            with self._watch_lock:
                old, self._watch = self._watch, None
            # disposing joins the observer thread, which may be reading watched_path
            if old is not None:
                old.handle.dispose()
                log.debug("Disposed watch on %s", old.path)
            if path is None:
                return None
            try:
                handle = self._watch_factory(path, listener)
            except OSError as e:
                self._logging.log_error(f"Unable to watch config file {path}", e)
                return None
            binding = WatchBinding(path=path, handle=handle)
            with self._watch_lock:
                self._watch = binding
            return binding

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop the server, release the watch and close the transition queue."""
        if self._closed:
            return
        self.stop().result(timeout)
        self._closed = True
        self.rebind_watch(None, lambda kind, path: None)
        self._executor.shutdown(wait=True)
        log.info("Supervisor shut down")

    # ─── Transitions (run on the queue worker only) ────────────────────

    def _submit(self, fn: Callable[..., Any], *args: Any) -> "Future[ServerState]":
        if self._closed:
            log.debug("Supervisor is shut down, ignoring %s", getattr(fn, "__name__", fn))
            future: Future[ServerState] = Future()
            future.set_result(self._state)
            return future
        return self._executor.submit(self._run_transition, fn, *args)

    def _run_transition(self, fn: Callable[..., Any], *args: Any) -> ServerState:
        try:
            fn(*args)
        except Exception:
            log.exception("Unexpected error in lifecycle transition %s", getattr(fn, "__name__", fn))
            if self._process is None and self._state is not ServerState.STOPPED:
                self._set_state(ServerState.STOPPED)
            raise
        return self._state

    def _set_state(self, state: ServerState) -> None:
        with self._lock:
            if state is self._state:
                return
            previous, self._state = self._state, state
            listeners = list(self._state_listeners)
        log.debug("Server state %s -> %s", previous.value, state.value)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                log.exception("State listener failed")

    def _do_set_workspace_path(self, path: str) -> None:
        self._workspace_root = path

    def _do_set_config_path(self, path: str | None) -> None:
        self._config_path = path

    def _do_start(self) -> None:
        if self._state is not ServerState.STOPPED:
            self._logging.log_debug(f"Language server is already {self._state.value}, ignoring start request")
            return
        self._launch()

    def _do_stop(self) -> None:
        if not self._state.is_active():
            log.debug("Language server is not running")
            return
        self._set_state(ServerState.STOPPING)
        self._teardown()
        self._set_state(ServerState.STOPPED)

    def _do_restart(self, generation: int) -> None:
        if self._state is ServerState.STOPPING:
            self._logging.log_warning("Cannot restart while the language server is stopping")
            return
        self._logging.log_info("Restarting language server")
        self._set_state(ServerState.RESTARTING)
        self._teardown()
        if generation != self._restart_generation:
            self._logging.log_debug("Restart superseded by a newer request, skipping start")
            return
        self._launch()

    def _launch(self) -> None:
        try:
            workspace_root, config_path = self._require_configuration()
        except ConfigurationError as e:
            self._report_failure("Unable to start the Psalm language server", e)
            self._set_state(ServerState.STOPPED)
            return

        self._set_state(ServerState.STARTING)
        self._logging.log_info(f"Starting language server (workspace: {workspace_root}, config: {config_path})")
        try:
            process = self._launcher.spawn(workspace_root, config_path, self._on_process_exit)
        except SpawnError as e:
            self._report_failure("The Psalm language server failed to start", e)
            self._set_state(ServerState.STOPPED)
            return

        if not process.wait_ready(self._startup_timeout):
            error = SpawnError(f"Process exited during startup with code {process.returncode}")
            self._report_failure("The Psalm language server failed to start", error)
            self._set_state(ServerState.STOPPED)
            return

        self._process = process
        self._start_count += 1
        self.last_error = None
        self._set_state(ServerState.RUNNING)
        self._logging.log_info(f"Language server started (pid {process.pid})")

    def _require_configuration(self) -> tuple[str, str]:
        if not self._workspace_root:
            raise ConfigurationError("No workspace root is set. Select a workspace and reload the window")
        if not self._config_path:
            raise ConfigurationError("No Psalm config file has been resolved")
        return self._workspace_root, self._config_path

    def _teardown(self) -> None:
        process = self._process
        if process is None:
            return
        self._process = None
        self._logging.log_info(f"Stopping language server (pid {process.pid})")
        try:
            process.shutdown(self._shutdown_timeout)
        except ShutdownTimeout as e:
            self._logging.log_warning(f"{e}, forcing termination")
            process.force_terminate()
            if not process.wait_exit(self.KILL_WAIT_SECONDS):
                self._logging.log_error(f"Language server process {process.pid} could not be terminated")
                return
        self._logging.log_info("Language server stopped")

    def _report_failure(self, message: str, error: SupervisorError) -> None:
        self.last_error = error
        self._logging.log_error(message, error)
        if self._notifier is not None:
            self._notifier.show_warning_message(f"{message}: {error}")

    # ─── Process exit notifications ────────────────────────────────────

    def _on_process_exit(self, process: ServerProcess, returncode: int | None) -> None:
        # called from the process waiter thread
        if self._closed:
            return
        try:
            self._executor.submit(self._run_transition, self._handle_exit, process, returncode)
        except RuntimeError:
            log.debug("Transition queue closed, dropping exit notification for pid %s", process.pid)

    def _handle_exit(self, process: ServerProcess, returncode: int | None) -> None:
        if process is not self._process:
            # torn down on purpose, or never made it to RUNNING
            return
        self._process = None
        error = SupervisorError(f"Process {process.pid} exited unexpectedly with code {returncode}")
        self._report_failure("The Psalm language server crashed", error)
        self._set_state(ServerState.STOPPED)
