"""
Activation: wires the collaborators together, resolves the initial config and starts the server.
"""

import logging
import signal
import threading
from dataclasses import dataclass, field
from typing import Any

from psalm_supervisor.commands import register_commands
from psalm_supervisor.config_resolver import ConfigResolver
from psalm_supervisor.configuration import ConfigurationService
from psalm_supervisor.constants import DEFAULT_CONTROL_HOST
from psalm_supervisor.control_server import ControlServer
from psalm_supervisor.errors import ConfigurationError, NoConfigFileFound
from psalm_supervisor.logging_service import LoggingService, LogLevel
from psalm_supervisor.notifications import Notifier, StatusBar
from psalm_supervisor.process import PsalmServerLauncher, ServerLauncher
from psalm_supervisor.router import EventRouter
from psalm_supervisor.supervisor import ServerSupervisor
from psalm_supervisor.watch import WatchFactory, WatchHandle, create_file_watch
from psalm_supervisor.workspace import LocalWorkspace, WorkspaceContext

log = logging.getLogger(__name__)


@dataclass
class Application:
    configuration: ConfigurationService
    logging_service: LoggingService
    notifier: Notifier
    status_bar: StatusBar
    workspace: LocalWorkspace
    supervisor: ServerSupervisor
    router: EventRouter
    settings_watch: WatchHandle | None = None
    control_server: ControlServer | None = None
    _shutdown_event: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def deactivate(self) -> None:
        if self.control_server is not None:
            self.control_server.stop()
            self.control_server = None
        if self.settings_watch is not None:
            self.settings_watch.dispose()
            self.settings_watch = None
        self.supervisor.shutdown()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def run_forever(self) -> None:
        """Block until SIGINT/SIGTERM, then deactivate."""

        def _signal_handler(signum: int, frame: Any) -> None:
            log.info("Received signal %d, shutting down...", signum)
            self.request_shutdown()

        signal.signal(signal.SIGTERM, _signal_handler)
        signal.signal(signal.SIGINT, _signal_handler)

        log.info("Supervising Psalm language server for %s", self.supervisor.workspace_root)
        while not self._shutdown_event.is_set():
            self._shutdown_event.wait(timeout=1)
        self.deactivate()


def activate(
    workspace_roots: list[str],
    settings_path: str | None = None,
    active_document: str | None = None,
    initial_settings: dict[str, Any] | None = None,
    launcher: ServerLauncher | None = None,
    watch_factory: WatchFactory = create_file_watch,
    control_host: str = DEFAULT_CONTROL_HOST,
    control_port: int = 0,
    start_server: bool = True,
) -> Application | None:
    """Set everything up and start the language server.

    :param workspace_roots: the workspace folders, in host order
    :param settings_path: YAML settings file, watched for changes
    :param active_document: the document focused at startup, if any
    :param initial_settings: setting values overriding the settings file
    :param control_port: port of the HTTP control surface; 0 disables it
    :return: the running application, or None if there is no workspace to supervise
    :raises ConfigurationError: if the settings file is invalid
    """
    configuration = ConfigurationService(settings_path, initial_settings)
    configuration.init()

    logging_service = LoggingService(LogLevel.parse(configuration.get("logLevel")))
    notifier = Notifier()
    status_bar = StatusBar(configuration)

    if not workspace_roots:
        logging_service.log_error("Psalm must be run in a workspace. Select a workspace and reload the window")
        return None

    workspace = LocalWorkspace(workspace_roots, active_document)
    resolver = ConfigResolver(workspace)
    workspace_root = workspace.active_document_root()
    if workspace_root is None:
        raise ConfigurationError("No workspace root could be determined")
    patterns = tuple(configuration.get("configPaths", []))

    selected: str | None = None
    try:
        roots = [workspace_root] + [r for r in workspace.list_workspace_roots() if r != workspace_root]
        candidates = resolver.resolve(patterns, roots)
        if candidates.selected is None:
            raise NoConfigFileFound(patterns)
        selected = candidates.selected
        logging_service.log_debug("Found the following Psalm XML Configs:", list(candidates.matches))
        logging_service.log_debug(f"Selecting config file: {selected}")
    except ConfigurationError as e:
        logging_service.log_error(str(e))
        notifier.show_warning_message(str(e))

    if launcher is None:
        launcher = PsalmServerLauncher(configuration)
    supervisor = ServerSupervisor(
        launcher,
        logging_service,
        notifier=notifier,
        watch_factory=watch_factory,
        workspace_root=workspace_root,
        config_path=selected,
        startup_timeout=float(configuration.get("startupTimeout", 3.0)),
        shutdown_timeout=float(configuration.get("shutdownTimeout", 10.0)),
    )
    supervisor.add_state_listener(status_bar.update)

    router = EventRouter(
        supervisor,
        workspace,
        resolver,
        configuration,
        logging_service,
        notifier,
        context=WorkspaceContext(workspace_root=workspace_root, config_search_patterns=patterns),
    )
    router.register_commands(
        register_commands(
            supervisor,
            configuration,
            logging_service,
            launcher if isinstance(launcher, PsalmServerLauncher) else None,
            ensure_config=router.ensure_config,
        )
    )

    app = Application(
        configuration=configuration,
        logging_service=logging_service,
        notifier=notifier,
        status_bar=status_bar,
        workspace=workspace,
        supervisor=supervisor,
        router=router,
    )

    if selected is not None:
        router.bind_config_watch(selected)
    if settings_path is not None:
        app.settings_watch = watch_factory(settings_path, router.on_settings_file_event)

    if start_server and selected is not None:
        supervisor.start().result()

    if control_port:
        app.control_server = ControlServer(supervisor, router, logging_service, notifier, status_bar, control_host, control_port)
        app.control_server.start()

    logging_service.log_debug("Finished activation")
    return app
