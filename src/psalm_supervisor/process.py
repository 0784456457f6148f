"""
Process control surface for the Psalm language server.

The protocol spoken over the server's stdio is opaque here: the supervisor only
spawns the process, waits for it to come up, shuts it down and learns when it exits.
"""

import logging
import os
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import IO, Any

from overrides import override

from psalm_supervisor.configuration import ConfigurationService
from psalm_supervisor.constants import SUPERVISOR_LOG_DIR
from psalm_supervisor.errors import ShutdownTimeout, SpawnError

log = logging.getLogger(__name__)


class ServerProcess(ABC):
    """Handle to one spawned server process."""

    def __init__(self, workspace_root: str, config_path: str) -> None:
        self.workspace_root = workspace_root
        self.config_path = config_path
        self.start_time = time.time()

    @property
    @abstractmethod
    def pid(self) -> int | None: ...

    @property
    @abstractmethod
    def returncode(self) -> int | None: ...

    @abstractmethod
    def is_alive(self) -> bool: ...

    @abstractmethod
    def wait_ready(self, timeout: float) -> bool:
        """Block until the process is ready or *timeout* elapses.

        :return: False if the process exited before becoming ready
        """

    @abstractmethod
    def request_shutdown(self) -> None:
        """Ask the process to exit gracefully (non-blocking)."""

    @abstractmethod
    def wait_exit(self, timeout: float) -> bool:
        """:return: True if the process has exited within *timeout*"""

    @abstractmethod
    def force_terminate(self) -> None: ...

    def shutdown(self, timeout: float) -> None:
        """Request a graceful shutdown and wait for it.

        :raises ShutdownTimeout: if the process is still alive after *timeout*
        """
        self.request_shutdown()
        if not self.wait_exit(timeout):
            raise ShutdownTimeout(self.pid, timeout)

    @property
    def uptime(self) -> float | None:
        if self.is_alive():
            return time.time() - self.start_time
        return None


ExitCallback = Callable[[ServerProcess, int | None], None]


class ServerLauncher(ABC):
    @abstractmethod
    def spawn(self, workspace_root: str, config_path: str, on_exit: ExitCallback) -> ServerProcess:
        """Launch a server bound to (*workspace_root*, *config_path*).

        *on_exit* is called from a background thread once the process has exited, whatever the cause.

        :raises SpawnError: if the process cannot be launched
        """


class PsalmServerProcess(ServerProcess):
    def __init__(
        self,
        process: "subprocess.Popen[bytes]",
        workspace_root: str,
        config_path: str,
        on_exit: ExitCallback,
        log_files: tuple[IO[Any], ...] = (),
    ) -> None:
        super().__init__(workspace_root, config_path)
        self._process = process
        self._on_exit = on_exit
        self._log_files = log_files
        self._exited = threading.Event()
        self._waiter = threading.Thread(target=self._wait_for_exit, name=f"psalm-server-{process.pid}", daemon=True)
        self._waiter.start()

    def _wait_for_exit(self) -> None:
        returncode = self._process.wait()
        self._close_log_files()
        self._exited.set()
        log.debug("Psalm server process %d exited with code %s", self._process.pid, returncode)
        try:
            self._on_exit(self, returncode)
        except Exception:
            log.exception("Exit callback for pid %d failed", self._process.pid)

    def _close_log_files(self) -> None:
        for f in self._log_files:
            try:
                f.close()
            except OSError as e:
                log.debug("Failed to close server log file: %s", e)

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.poll()

    @override
    def is_alive(self) -> bool:
        return self._process.poll() is None

    @override
    def wait_ready(self, timeout: float) -> bool:
        # the process is considered ready once it survives the startup grace period
        return not self._exited.wait(timeout)

    @override
    def request_shutdown(self) -> None:
        if not self.is_alive():
            return
        # EOF on stdin ends a stdio language server session
        if self._process.stdin is not None:
            try:
                self._process.stdin.close()
            except OSError:
                pass
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass

    @override
    def wait_exit(self, timeout: float) -> bool:
        try:
            self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return True

    @override
    def force_terminate(self) -> None:
        try:
            self._process.kill()
        except ProcessLookupError:
            pass


class PsalmServerLauncher(ServerLauncher):
    """Spawns ``psalm-language-server`` through the configured PHP interpreter."""

    def __init__(self, configuration: ConfigurationService, log_dir: str = SUPERVISOR_LOG_DIR) -> None:
        self._configuration = configuration
        self._log_dir = log_dir

    @property
    def log_dir(self) -> str:
        return self._log_dir

    def resolve_script_path(self, workspace_root: str) -> str:
        script = str(self._configuration.get("psalmScriptPath", ""))
        if not os.path.isabs(script):
            script = os.path.join(workspace_root, script)
        return script

    def build_command(self, workspace_root: str, config_path: str) -> list[str]:
        get = self._configuration.get
        cmd = [
            str(get("phpExecutablePath", "php")),
            *[str(a) for a in get("phpExecutableArgs", [])],
            self.resolve_script_path(workspace_root),
            *[str(a) for a in get("psalmScriptArgs", [])],
            "-r",
            workspace_root,
            "-c",
            config_path,
        ]
        if get("enableVerbose", False):
            cmd.append("--verbose")
        if get("enableUseIniDefaults", False):
            cmd.append("--use-ini-defaults")
        if get("disableAutoComplete", False):
            cmd.append("--enable-autocomplete=false")
        if get("enableDebugLog", False):
            cmd.append(f"--log-file={os.path.join(self._log_dir, 'psalm-language-server.log')}")
        return cmd

    @override
    def spawn(self, workspace_root: str, config_path: str, on_exit: ExitCallback) -> ServerProcess:
        script = self.resolve_script_path(workspace_root)
        if not os.path.isfile(script):
            raise SpawnError(f"Unable to find Psalm Language Server at {script}. Check the psalm.psalmScriptPath setting")

        cmd = self.build_command(workspace_root, config_path)
        log.info("Starting Psalm language server: %s", " ".join(cmd))

        os.makedirs(self._log_dir, exist_ok=True)
        stdout_file = open(os.path.join(self._log_dir, "server.stdout.log"), "ab")  # noqa: SIM115
        stderr_file = open(os.path.join(self._log_dir, "server.stderr.log"), "ab")  # noqa: SIM115
        try:
            process = subprocess.Popen(cmd, cwd=workspace_root, stdin=subprocess.PIPE, stdout=stdout_file, stderr=stderr_file)
        except OSError as e:
            stdout_file.close()
            stderr_file.close()
            raise SpawnError(f"Failed to launch {cmd[0]}: {e}") from e
        return PsalmServerProcess(process, workspace_root, config_path, on_exit, log_files=(stdout_file, stderr_file))

    def php_version(self) -> str | None:
        """First line of ``php --version``, or None if PHP cannot be run."""
        php = str(self._configuration.get("phpExecutablePath", "php"))
        try:
            result = subprocess.run([php, "--version"], capture_output=True, text=True, timeout=10, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            log.debug("Could not determine PHP version: %s", e)
            return None
        lines = result.stdout.strip().splitlines()
        return lines[0] if lines else None

    def server_stderr_tail(self, num_lines: int = 50) -> list[str]:
        """Last lines written by the server to stderr."""
        path = os.path.join(self._log_dir, "server.stderr.log")
        if not os.path.exists(path):
            return []
        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
            return [line.rstrip("\n") for line in lines[-num_lines:]]
        except OSError as e:
            log.warning("Failed to read log file %s: %s", path, e)
            return []
