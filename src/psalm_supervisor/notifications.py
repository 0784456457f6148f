"""
User-facing notification surfaces: the status indicator and warning prompts.

Rendering is left to the host; these classes only hold what should be shown.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from psalm_supervisor.configuration import ConfigurationService
from psalm_supervisor.state import ServerState

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class WarningMessage:
    message: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "timestamp": self.timestamp}


class Notifier:
    """Collects warning prompts and forwards them to registered listeners."""

    def __init__(self, max_messages: int = 100) -> None:
        self._lock = threading.Lock()
        self._messages: deque[WarningMessage] = deque(maxlen=max_messages)
        self._listeners: list[Callable[[WarningMessage], None]] = []

    def add_listener(self, listener: Callable[[WarningMessage], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def show_warning_message(self, message: str) -> None:
        warning = WarningMessage(message)
        with self._lock:
            self._messages.append(warning)
            listeners = list(self._listeners)
        log.warning("Psalm: %s", message)
        for listener in listeners:
            try:
                listener(warning)
            except Exception:
                log.exception("Warning listener failed")

    def messages(self) -> list[WarningMessage]:
        with self._lock:
            return list(self._messages)


class StatusBar:
    """Status indicator reflecting the current :class:`ServerState`."""

    _TEXT: dict[ServerState, str] = {
        ServerState.STOPPED: "Psalm: stopped",
        ServerState.STARTING: "Psalm: starting...",
        ServerState.RUNNING: "Psalm: ready",
        ServerState.STOPPING: "Psalm: stopping...",
        ServerState.RESTARTING: "Psalm: restarting...",
    }

    def __init__(self, configuration: ConfigurationService | None = None) -> None:
        self._configuration = configuration
        self._state = ServerState.STOPPED

    def update(self, state: ServerState) -> None:
        self._state = state
        log.debug("Status: %s", self.text if self.visible else "<hidden>")

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def text(self) -> str:
        return self._TEXT[self._state]

    @property
    def visible(self) -> bool:
        if self._state is not ServerState.RUNNING or self._configuration is None:
            return True
        return not self._configuration.get("hideStatusMessageWhenRunning", False)

    def to_dict(self) -> dict[str, Any]:
        return {"state": self._state.value, "text": self.text, "visible": self.visible}
