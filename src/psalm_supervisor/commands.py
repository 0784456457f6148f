"""
Named commands the host can invoke.
"""

import io
import platform
from collections.abc import Callable
from typing import Any

from ruamel.yaml import YAML

from psalm_supervisor import __version__
from psalm_supervisor.configuration import ConfigurationService
from psalm_supervisor.constants import (
    COMMAND_REPORT_ISSUE,
    COMMAND_RESTART_SERVER,
    COMMAND_SHOW_OUTPUT,
    ISSUE_TRACKER_URL,
    SETTINGS_SECTION,
)
from psalm_supervisor.logging_service import LoggingService
from psalm_supervisor.process import PsalmServerLauncher
from psalm_supervisor.supervisor import ServerSupervisor

REPORT_OUTPUT_LINES = 100


def _settings_to_yaml(settings: dict[str, Any]) -> str:
    yaml = YAML()
    yaml.default_flow_style = False
    buf = io.StringIO()
    yaml.dump({SETTINGS_SECTION: settings}, buf)
    return buf.getvalue()


def build_issue_report(
    supervisor: ServerSupervisor,
    configuration: ConfigurationService,
    logging_service: LoggingService,
    launcher: PsalmServerLauncher | None = None,
) -> str:
    """Assemble a markdown report with everything needed to file a bug.

    :return: the report body; paste it into a new issue at :data:`ISSUE_TRACKER_URL`
    """
    php_version = launcher.php_version() if launcher is not None else None
    status = supervisor.describe()
    output = logging_service.lines(REPORT_OUTPUT_LINES)

    parts = [
        "## Environment",
        "",
        f"- psalm-supervisor: {__version__}",
        f"- PHP: {php_version or 'unknown'}",
        f"- Platform: {platform.platform()}",
        f"- Python: {platform.python_version()}",
        "",
        "## Server",
        "",
    ]
    parts.extend(f"- {key}: {value}" for key, value in status.items())
    parts += [
        "",
        "## Settings",
        "",
        "```yaml",
        _settings_to_yaml(configuration.as_dict()).rstrip("\n"),
        "```",
        "",
        f"## Output (last {REPORT_OUTPUT_LINES} lines)",
        "",
        "```",
        *output,
        "```",
    ]
    if launcher is not None:
        stderr = launcher.server_stderr_tail()
        if stderr:
            parts += ["", "## Server stderr", "", "```", *stderr, "```"]
    parts += ["", f"File the issue at {ISSUE_TRACKER_URL}", ""]
    return "\n".join(parts)


def register_commands(
    supervisor: ServerSupervisor,
    configuration: ConfigurationService,
    logging_service: LoggingService,
    launcher: PsalmServerLauncher | None = None,
    ensure_config: Callable[[], str | None] | None = None,
) -> dict[str, Callable[[], Any]]:
    """Build the command table exposed to the host.

    :param ensure_config: called before a user restart to resolve a config file when none is bound yet
    """

    def restart_server() -> Any:
        logging_service.log_info("Restart requested by user")
        if ensure_config is not None:
            ensure_config()
        return supervisor.restart()

    def show_output() -> list[str]:
        return logging_service.lines()

    def report_issue() -> str:
        return build_issue_report(supervisor, configuration, logging_service, launcher)

    return {
        COMMAND_RESTART_SERVER: restart_server,
        COMMAND_SHOW_OUTPUT: show_output,
        COMMAND_REPORT_ISSUE: report_issue,
    }
