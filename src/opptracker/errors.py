from __future__ import annotations


class TrackerError(Exception):
    """Base class for opptracker errors."""


class SchemaError(TrackerError):
    """Payload version is unknown or newer than this build understands."""


class InvalidBackupError(TrackerError):
    """An imported snapshot failed structural validation. Nothing was adopted."""


class PersistenceError(TrackerError):
    """A state write was rejected by the key store."""
