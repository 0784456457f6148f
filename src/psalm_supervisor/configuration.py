"""
Typed access to the ``psalm`` settings namespace.

Settings are read from a YAML file with a top-level ``psalm:`` mapping, for example::

    psalm:
      configPaths:
        - psalm.xml
        - psalm.xml.dist
      logLevel: DEBUG
      phpExecutablePath: /usr/bin/php

Keys missing from the file take the values in :data:`~psalm_supervisor.constants.DEFAULT_SETTINGS`.
"""

from __future__ import annotations

import copy
import logging
import os
import threading
from typing import Any, Mapping

from psalm_supervisor.constants import DEFAULT_SETTINGS, SETTINGS_SECTION
from psalm_supervisor.errors import ConfigurationError
from psalm_supervisor.util.general import load_yaml

log = logging.getLogger(__name__)


class ConfigurationService:
    """Snapshot of the settings file, refreshed only by :meth:`init`."""

    def __init__(self, settings_path: str | None = None, initial_values: Mapping[str, Any] | None = None) -> None:
        """
        :param settings_path: YAML settings file; ``None`` means defaults only
        :param initial_values: values that take precedence over the file (e.g. command line options)
        """
        self._settings_path = settings_path
        self._initial_values = dict(initial_values or {})
        self._lock = threading.Lock()
        self._values: dict[str, Any] = self._with_defaults({})

    @property
    def settings_path(self) -> str | None:
        return self._settings_path

    def init(self) -> None:
        """(Re-)read the settings file into the process-wide snapshot.

        :raises ConfigurationError: if the file exists but is not a valid settings document
        """
        values = self.read_settings()
        with self._lock:
            self._values = values
        log.debug("Loaded settings from %s", self._settings_path or "<defaults>")

    reinit = init

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value of a setting.

        :param key: the key without namespace (``configPaths``) or with it (``psalm.configPaths``)
        :param default: returned when the key is unset or ``None``
        """
        key = self._strip_section(key)
        with self._lock:
            value = self._values.get(key)
        if value is None:
            return default
        return copy.deepcopy(value)

    def as_dict(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._values)

    def read_settings(self) -> dict[str, Any]:
        """Read the settings file without touching the current snapshot."""
        return self._with_defaults(self._load_section())

    def changed_keys(self) -> frozenset[str]:
        """Compare the file on disk with the snapshot.

        :return: fully-qualified keys (``psalm.<key>``) whose values differ
        """
        fresh = self.read_settings()
        with self._lock:
            current = dict(self._values)
        keys = set(fresh) | set(current)
        return frozenset(f"{SETTINGS_SECTION}.{key}" for key in keys if fresh.get(key) != current.get(key))

    def _load_section(self) -> dict[str, Any]:
        path = self._settings_path
        if path is None:
            return {}
        if not os.path.isfile(path):
            log.debug("Settings file %s does not exist, using defaults", path)
            return {}
        try:
            data = load_yaml(path)
        except Exception as e:
            raise ConfigurationError(f"Could not read settings file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid settings file (expected YAML mapping): {path}")
        section = data.get(SETTINGS_SECTION, {})
        if section is None:
            return {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Invalid settings file ('{SETTINGS_SECTION}' must be a mapping): {path}")
        return dict(section)

    def _with_defaults(self, values: dict[str, Any]) -> dict[str, Any]:
        result = copy.deepcopy(DEFAULT_SETTINGS)
        result.update(values)
        result.update(self._initial_values)
        return result

    @staticmethod
    def _strip_section(key: str) -> str:
        prefix = SETTINGS_SECTION + "."
        if key.startswith(prefix):
            return key[len(prefix) :]
        return key
