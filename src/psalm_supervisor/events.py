"""Inbound host events and the operations they are normalized into."""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from psalm_supervisor.config_resolver import ConfigCandidateSet
from psalm_supervisor.watch import WatchEventKind
from psalm_supervisor.workspace import WorkspaceContext


@dataclass(frozen=True)
class ConfigFileEvent:
    kind: WatchEventKind
    path: str


@dataclass(frozen=True)
class ActiveEditorChanged:
    document_path: str | None


@dataclass(frozen=True)
class SettingsChanged:
    changed_keys: frozenset[str]

    def affects_configuration(self, section: str) -> bool:
        """Whether *section* or any key below it changed (``psalm`` is affected by ``psalm.logLevel``)."""
        return any(key == section or key.startswith(section + ".") for key in self.changed_keys)


@dataclass(frozen=True)
class CommandInvoked:
    name: str


HostEvent = Union[ConfigFileEvent, ActiveEditorChanged, SettingsChanged, CommandInvoked]


class Operation(Enum):
    NONE = "none"
    RESTART = "restart"
    STOP = "stop"
    SWITCH_WORKSPACE = "switch_workspace"
    RELOAD_SETTINGS = "reload_settings"
    REFRESH_SETTINGS = "refresh_settings"
    RUN_COMMAND = "run_command"


@dataclass(frozen=True)
class RoutedOperation:
    """The decision taken for one event, before anything is applied."""

    operation: Operation
    reason: str = ""
    context: WorkspaceContext | None = None
    candidates: ConfigCandidateSet | None = None
    command: str | None = None
