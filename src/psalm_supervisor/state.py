from enum import Enum


class ServerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    RESTARTING = "restarting"

    def is_active(self) -> bool:
        """Whether a server process may exist in this state."""
        return self is not ServerState.STOPPED
