"""cc-trace: segment and search Claude Code session traces."""

__version__ = "0.1.0"
