import os
from typing import Any

FILE_ENCODING = "utf-8"

SETTINGS_SECTION = "psalm"
"""Namespace under which all settings live (``psalm.configPaths`` etc.)."""

HIDE_STATUS_MESSAGE_SETTING = f"{SETTINGS_SECTION}.hideStatusMessageWhenRunning"
"""Cosmetic setting whose changes must not trigger any action."""

SUPERVISOR_HOME_DIR = os.path.join(os.path.expanduser("~"), ".psalm-supervisor")
SUPERVISOR_LOG_DIR = os.path.join(SUPERVISOR_HOME_DIR, "logs")
DEFAULT_SETTINGS_FILE = os.path.join(SUPERVISOR_HOME_DIR, "settings.yml")

DEFAULT_CONTROL_HOST = "127.0.0.1"
DEFAULT_CONTROL_PORT = 9100

# ---------------------------------------------------------------------------
# Defaults applied when keys are missing from the settings file
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, Any] = {
    "configPaths": ["psalm.xml", "psalm.xml.dist"],
    "logLevel": "INFO",
    "phpExecutablePath": "php",
    "phpExecutableArgs": [
        "-dxdebug.remote_autostart=0",
        "-dxdebug.remote_enable=0",
        "-dxdebug_profiler_enable=0",
    ],
    "psalmScriptPath": os.path.join("vendor", "vimeo", "psalm", "psalm-language-server"),
    "psalmScriptArgs": [],
    "enableVerbose": False,
    "enableDebugLog": False,
    "enableUseIniDefaults": False,
    "disableAutoComplete": False,
    "hideStatusMessageWhenRunning": False,
    "startupTimeout": 3.0,
    "shutdownTimeout": 10.0,
}

# Command identifiers exposed to the host
COMMAND_RESTART_SERVER = "psalm.restartPsalmServer"
COMMAND_SHOW_OUTPUT = "psalm.showOutput"
COMMAND_REPORT_ISSUE = "psalm.reportIssue"

ISSUE_TRACKER_URL = "https://github.com/psalm/psalm-vscode-plugin/issues/new"
