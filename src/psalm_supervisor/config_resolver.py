"""
Finds the Psalm configuration files of a workspace and selects the authoritative one.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from psalm_supervisor.errors import NoPatternsConfigured
from psalm_supervisor.workspace import path_is_within

log = logging.getLogger(__name__)


class FileSearch(Protocol):
    def find_files(self, glob: str) -> list[str]: ...


@dataclass(frozen=True)
class ConfigCandidateSet:
    patterns: tuple[str, ...]
    matches: tuple[str, ...]
    selected: str | None
    workspace_root: str | None = None


def combine_patterns(patterns: Sequence[str]) -> str:
    """Join search patterns into a single glob alternation (``{a,b}``)."""
    return "{" + ",".join(patterns) + "}"


def normalize_search_path(path: str, platform: str | None = None) -> str:
    """Convert a path returned by the search layer into a native path.

    On back-slash platforms the URI path ``/C:/repo/psalm.xml`` becomes ``C:\\repo\\psalm.xml``.
    """
    platform = platform or sys.platform
    if platform == "win32":
        return path.replace("/", "\\").lstrip("\\")
    return path


def select_config(matches: Sequence[str], active_root: str | None) -> str | None:
    """Pick the first match inside *active_root*, else the first match, else ``None``."""
    if not matches:
        return None
    if active_root:
        for path in matches:
            if path_is_within(path, active_root):
                return path
    return matches[0]


class ConfigResolver:
    def __init__(self, search: FileSearch, platform: str | None = None) -> None:
        self._search = search
        self._platform = platform or sys.platform

    def resolve(self, patterns: Sequence[str], candidate_roots: Sequence[str]) -> ConfigCandidateSet:
        """Search for config files and select the authoritative one.

        :param patterns: config search globs (``psalm.configPaths``)
        :param candidate_roots: workspace roots, the active root first
        :raises NoPatternsConfigured: if *patterns* is empty
        """
        patterns = tuple(p for p in patterns if p)
        if not patterns:
            raise NoPatternsConfigured()

        raw = self._search.find_files(combine_patterns(patterns))
        matches: list[str] = []
        for path in raw:
            native = normalize_search_path(path, self._platform)
            if native not in matches:
                matches.append(native)

        active_root = candidate_roots[0] if candidate_roots else None
        selected = select_config(matches, active_root)
        log.debug("Resolved config for root %s: %s (candidates: %s)", active_root, selected, matches)
        return ConfigCandidateSet(
            patterns=patterns,
            matches=tuple(matches),
            selected=selected,
            workspace_root=active_root,
        )
