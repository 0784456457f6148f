"""
Translates host events into supervisor operations.

:meth:`EventRouter.route` only decides (and can be tested without a live host);
:meth:`EventRouter.dispatch` applies the decision.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from psalm_supervisor.config_resolver import ConfigResolver
from psalm_supervisor.configuration import ConfigurationService
from psalm_supervisor.constants import HIDE_STATUS_MESSAGE_SETTING, SETTINGS_SECTION
from psalm_supervisor.errors import ConfigurationError, NoConfigFileFound
from psalm_supervisor.events import (
    ActiveEditorChanged,
    CommandInvoked,
    ConfigFileEvent,
    HostEvent,
    Operation,
    RoutedOperation,
    SettingsChanged,
)
from psalm_supervisor.logging_service import LoggingService
from psalm_supervisor.notifications import Notifier
from psalm_supervisor.supervisor import ServerSupervisor
from psalm_supervisor.watch import WatchBinding, WatchEventKind
from psalm_supervisor.workspace import LocalWorkspace, WorkspaceContext

log = logging.getLogger(__name__)

RELOAD_REQUIRED_MESSAGE = "You will need to reload this window for the new configuration to take effect"

_NOOP = RoutedOperation(Operation.NONE)


class EventRouter:
    def __init__(
        self,
        supervisor: ServerSupervisor,
        workspace: LocalWorkspace,
        resolver: ConfigResolver,
        configuration: ConfigurationService,
        logging_service: LoggingService,
        notifier: Notifier,
        context: WorkspaceContext | None = None,
        commands: Mapping[str, Callable[[], Any]] | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._workspace = workspace
        self._resolver = resolver
        self._configuration = configuration
        self._logging = logging_service
        self._notifier = notifier
        self._context = context
        self._commands: dict[str, Callable[[], Any]] = dict(commands or {})
        # events arrive from watch threads and the control server concurrently;
        # _lock guards the routing state and is never held while a watch is disposed
        self._lock = threading.RLock()
        # serializes workspace switches and config (re)binding; watch threads never take it
        self._switch_lock = threading.RLock()

    @property
    def context(self) -> WorkspaceContext | None:
        return self._context

    def register_commands(self, commands: Mapping[str, Callable[[], Any]]) -> None:
        self._commands.update(commands)

    def command_names(self) -> list[str]:
        return sorted(self._commands)

    def handle(self, event: HostEvent) -> Any:
        """Route one event and apply the resulting operation.

        :return: whatever the operation produced (a transition future, command output) or None
        """
        if isinstance(event, ActiveEditorChanged):
            with self._switch_lock:
                return self._handle(event)
        return self._handle(event)

    def _handle(self, event: HostEvent) -> Any:
        with self._lock:
            if isinstance(event, ActiveEditorChanged) and event.document_path:
                self._workspace.set_active_document(event.document_path)
            routed = self.route(event)
        if routed.operation is Operation.NONE:
            if routed.reason:
                log.debug("Ignoring %s: %s", event, routed.reason)
            return None
        return self.dispatch(routed)

    # ─── Decisions ─────────────────────────────────────────────────────

    def route(self, event: HostEvent) -> RoutedOperation:
        if isinstance(event, ConfigFileEvent):
            return self._route_config_file_event(event)
        if isinstance(event, ActiveEditorChanged):
            return self._route_active_editor_changed(event)
        if isinstance(event, SettingsChanged):
            return self._route_settings_changed(event)
        if isinstance(event, CommandInvoked):
            if event.name not in self._commands:
                return RoutedOperation(Operation.NONE, reason=f"unknown command {event.name}")
            return RoutedOperation(Operation.RUN_COMMAND, command=event.name)
        raise TypeError(f"Unsupported event: {event!r}")

    def _route_config_file_event(self, event: ConfigFileEvent) -> RoutedOperation:
        if event.path != self._supervisor.watched_path:
            return RoutedOperation(Operation.NONE, reason="event for a path that is no longer watched")
        if event.kind is WatchEventKind.DELETED:
            return RoutedOperation(Operation.STOP, reason=f"Config file deleted: {event.path}")
        return RoutedOperation(Operation.RESTART, reason=f"Config file changed: {event.path}")

    def _route_active_editor_changed(self, event: ActiveEditorChanged) -> RoutedOperation:
        if not event.document_path:
            return _NOOP
        workspace_root = self._workspace.active_document_root()
        current_root = self._context.workspace_root if self._context is not None else None
        if not workspace_root or workspace_root == current_root:
            return RoutedOperation(Operation.NONE, reason="workspace root unchanged")

        patterns = tuple(self._configuration.get("configPaths", []))
        roots = [workspace_root] + [r for r in self._workspace.list_workspace_roots() if r != workspace_root]
        try:
            candidates = self._resolver.resolve(patterns, roots)
        except ConfigurationError as e:
            self._logging.log_error("Unable to resolve the Psalm config for the new workspace", e)
            return RoutedOperation(Operation.NONE, reason=str(e))
        return RoutedOperation(
            Operation.SWITCH_WORKSPACE,
            reason=f"Workspace changed: {workspace_root}",
            context=WorkspaceContext(workspace_root=workspace_root, config_search_patterns=patterns),
            candidates=candidates,
        )

    @staticmethod
    def _route_settings_changed(event: SettingsChanged) -> RoutedOperation:
        if not event.affects_configuration(SETTINGS_SECTION):
            return _NOOP
        if event.affects_configuration(HIDE_STATUS_MESSAGE_SETTING):
            return RoutedOperation(Operation.REFRESH_SETTINGS, reason="Status message setting changed")
        return RoutedOperation(Operation.RELOAD_SETTINGS, reason="Configuration changed")

    # ─── Effects ───────────────────────────────────────────────────────

    def dispatch(self, routed: RoutedOperation) -> Any:
        op = routed.operation
        if op is Operation.RESTART:
            self._logging.log_info(routed.reason)
            return self._supervisor.restart()
        if op is Operation.STOP:
            self._logging.log_info(routed.reason)
            return self._supervisor.stop()
        if op is Operation.SWITCH_WORKSPACE:
            return self._switch_workspace(routed)
        if op is Operation.RELOAD_SETTINGS:
            return self._reload_settings()
        if op is Operation.REFRESH_SETTINGS:
            return self._refresh_settings()
        if op is Operation.RUN_COMMAND:
            if routed.command is None:
                raise ValueError("RUN_COMMAND requires a command name")
            self._logging.log_debug(f"Running command {routed.command}")
            return self._commands[routed.command]()
        return None

    def _switch_workspace(self, routed: RoutedOperation) -> Any:
        if routed.context is None or routed.candidates is None:
            raise ValueError("SWITCH_WORKSPACE requires a workspace context and config candidates")
        with self._switch_lock:
            with self._lock:
                self._context = routed.context
            selected = routed.candidates.selected
            self.bind_config_watch(selected)
            self._logging.log_info(routed.reason)
            self._supervisor.set_workspace_path(routed.context.workspace_root)
            self._supervisor.set_config_path(selected)
            return self._supervisor.restart()

    def _reload_settings(self) -> None:
        self._logging.log_debug("Configuration changed")
        self._notifier.show_warning_message(RELOAD_REQUIRED_MESSAGE)
        self._refresh_settings()

    def _refresh_settings(self) -> None:
        try:
            self._configuration.init()
        except ConfigurationError as e:
            self._logging.log_error("Failed to reload settings", e)

    # ─── Config (re)binding ────────────────────────────────────────────

    def ensure_config(self) -> str | None:
        """Resolve and bind a config file if none is bound yet.

        Lets a restart recover when no config existed at activation.

        :return: the config path the supervisor will use, or None if there still is none
        """
        with self._switch_lock:
            current = self._supervisor.config_path
            if current is not None:
                return current
            with self._lock:
                root = self._context.workspace_root if self._context is not None else self._workspace.active_document_root()
            if not root:
                return None
            patterns = tuple(self._configuration.get("configPaths", []))
            roots = [root] + [r for r in self._workspace.list_workspace_roots() if r != root]
            try:
                selected = self._resolver.resolve(patterns, roots).selected
                if selected is None:
                    raise NoConfigFileFound(patterns)
            except ConfigurationError as e:
                self._logging.log_warning(str(e))
                return None
            with self._lock:
                self._context = WorkspaceContext(workspace_root=root, config_search_patterns=patterns)
            self._logging.log_info(f"Selecting config file: {selected}")
            self.bind_config_watch(selected)
            self._supervisor.set_workspace_path(root)
            self._supervisor.set_config_path(selected)
            return selected

    # ─── Watch wiring ──────────────────────────────────────────────────

    def bind_config_watch(self, path: str | None) -> WatchBinding | None:
        return self._supervisor.rebind_watch(path, self.on_config_file_event)

    def on_config_file_event(self, kind: WatchEventKind, path: str) -> None:
        self.handle(ConfigFileEvent(kind=kind, path=path))

    def on_settings_file_event(self, kind: WatchEventKind, path: str) -> None:
        try:
            changed = self._configuration.changed_keys()
        except ConfigurationError as e:
            self._logging.log_error("Failed to read settings", e)
            return
        if changed:
            self.handle(SettingsChanged(changed_keys=changed))
