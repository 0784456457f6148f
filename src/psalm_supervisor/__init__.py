"""
Lifecycle supervisor for the Psalm language server.

Keeps a single server process bound to the active workspace root and its
authoritative ``psalm.xml``, restarting or stopping it as the host changes.
"""

__version__ = "0.4.0"
