"""
Workspace/editor surface: workspace roots, the focused document and file search.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import pathlib
import threading
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkspaceContext:
    """The workspace root the server is bound to and the patterns used to find its config.

    Immutable; a workspace switch produces a new instance.
    """

    workspace_root: str
    config_search_patterns: tuple[str, ...]


# ─── Glob helpers ──────────────────────────────────────────────────────


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternations (nested groups allowed) into plain glob patterns.

    >>> expand_braces("{psalm.xml,conf/{a,b}.xml}")
    ['psalm.xml', 'conf/a.xml', 'conf/b.xml']
    """
    start = pattern.find("{")
    if start < 0:
        return [pattern]
    depth = 0
    options: list[str] = []
    current_start = start + 1
    for i in range(start, len(pattern)):
        char = pattern[i]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                options.append(pattern[current_start:i])
                prefix, suffix = pattern[:start], pattern[i + 1 :]
                result: list[str] = []
                for option in options:
                    for expanded in expand_braces(prefix + option + suffix):
                        if expanded not in result:
                            result.append(expanded)
                return result
        elif char == "," and depth == 1:
            options.append(pattern[current_start:i])
            current_start = i + 1
    # unbalanced brace: treat literally
    return [pattern]


def match_glob(relative_path: str, pattern: str) -> bool:
    """Match a ``/``-separated relative path against a glob.

    ``*`` and ``?`` never cross a separator; a ``**`` segment matches zero or more directories.
    """
    parts = [p for p in relative_path.split("/") if p]
    pattern_parts = [p for p in pattern.strip("/").split("/") if p]
    return _match_parts(parts, pattern_parts)


def _match_parts(parts: list[str], pattern_parts: list[str]) -> bool:
    if not pattern_parts:
        return not parts
    head, rest = pattern_parts[0], pattern_parts[1:]
    if head == "**":
        return any(_match_parts(parts[i:], rest) for i in range(len(parts) + 1))
    return bool(parts) and fnmatch.fnmatchcase(parts[0], head) and _match_parts(parts[1:], rest)


def path_is_within(path: str, root: str) -> bool:
    """Whether *path* is *root* itself or lies below it (compared per path component)."""
    if not root:
        return False
    norm_root = root.rstrip("/\\")
    if path == norm_root:
        return True
    return any(path.startswith(norm_root + sep) for sep in ("/", "\\"))


# ─── Local workspace ───────────────────────────────────────────────────


class LocalWorkspace:
    """Workspace backed by directories on the local file system.

    The host reports focus changes through :meth:`set_active_document`.
    """

    IGNORED_DIRS = frozenset({".git", ".hg", ".svn", ".idea", ".vscode"})

    def __init__(self, roots: list[str], active_document: str | None = None) -> None:
        self._roots = [os.path.abspath(r) for r in roots]
        self._active_document = os.path.abspath(active_document) if active_document else None
        self._lock = threading.Lock()

    def list_workspace_roots(self) -> list[str]:
        return list(self._roots)

    @property
    def active_document(self) -> str | None:
        return self._active_document

    def set_active_document(self, path: str | None) -> None:
        with self._lock:
            self._active_document = os.path.abspath(path) if path else None

    def workspace_root_for(self, path: str) -> str | None:
        """Return the (innermost) workspace root containing *path*, or ``None``."""
        candidate = os.path.normcase(os.path.abspath(path))
        best: str | None = None
        for root in self._roots:
            if path_is_within(candidate, os.path.normcase(root)):
                if best is None or len(root) > len(best):
                    best = root
        return best

    def active_document_root(self) -> str | None:
        """Root of the focused document; falls back to the first root when nothing (or a foreign file) is focused."""
        with self._lock:
            document = self._active_document
        root = self.workspace_root_for(document) if document else None
        if root is not None:
            return root
        return self._roots[0] if self._roots else None

    def find_files(self, glob: str) -> list[str]:
        """Find files in all workspace roots matching a glob (``{a,b}`` alternations allowed).

        :return: URI-style paths (forward slashes; ``/C:/...`` on Windows), roots in order, each root
            in sorted walk order
        """
        patterns = expand_braces(glob)
        found: list[str] = []
        for root in self._roots:
            if not os.path.isdir(root):
                log.warning("Workspace root does not exist: %s", root)
                continue
            for dirpath, dirs, files in os.walk(root):
                dirs[:] = sorted(d for d in dirs if d not in self.IGNORED_DIRS)
                for fname in sorted(files):
                    abs_path = os.path.join(dirpath, fname)
                    rel_path = os.path.relpath(abs_path, root).replace("\\", "/")
                    if any(match_glob(rel_path, p) for p in patterns):
                        found.append(self._to_uri_path(abs_path))
        log.debug("find_files(%s) -> %d match(es)", glob, len(found))
        return found

    @staticmethod
    def _to_uri_path(abs_path: str) -> str:
        return unquote(urlparse(pathlib.Path(abs_path).as_uri()).path)
