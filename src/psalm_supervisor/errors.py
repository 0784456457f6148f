"""Error taxonomy for the supervisor.

All of these are absorbed at the supervisor boundary and turned into log
entries and user notifications; none of them is meant to take down the host.
"""


class SupervisorError(Exception):
    """Base class for errors raised by psalm_supervisor."""


class ConfigurationError(SupervisorError):
    """The server cannot be configured (no search patterns, no config file, no workspace)."""


class NoPatternsConfigured(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("No Config Paths defined. Define some and reload the window")


class NoConfigFileFound(ConfigurationError):
    def __init__(self, patterns: tuple[str, ...] | list[str]) -> None:
        self.patterns = tuple(patterns)
        super().__init__(f"No Config file found in: {','.join(self.patterns)}")


class SpawnError(SupervisorError):
    """The server process could not be launched or exited before becoming ready."""


class ShutdownTimeout(SupervisorError):
    """The server process did not acknowledge a graceful shutdown in time."""

    def __init__(self, pid: int | None, timeout: float) -> None:
        self.pid = pid
        self.timeout = timeout
        super().__init__(f"Server process {pid} did not stop within {timeout:g}s")
