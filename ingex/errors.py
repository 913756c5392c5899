"""Ingex error hierarchy.

All project exceptions inherit from IngexError so the entry point can catch
them at one boundary:

    IngexError
    ├── ConfigError       # invalid or incomplete configuration (fatal)
    ├── StateError        # unreadable processing-state file (fatal)
    ├── SourceError       # archive listing/fetch failed
    ├── ArchiveError      # zip has no usable database member
    └── BulkIndexError    # bulk request failed or reported item errors
"""

from __future__ import annotations


class IngexError(Exception):
    """Base class for all ingex errors."""


class ConfigError(IngexError):
    pass


class StateError(IngexError):
    pass


class SourceError(IngexError):
    pass


class ArchiveError(IngexError):
    pass


class BulkIndexError(IngexError):
    """Raised once per failed bulk call; carries no per-document detail."""
