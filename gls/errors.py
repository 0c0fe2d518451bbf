"""Error taxonomy for gls."""
from __future__ import annotations


class GlsError(Exception):
    """Base class for errors surfaced to the user."""


class ConfigError(GlsError):
    """Missing or invalid configuration. Raised before any I/O happens."""


class RemoteFetchError(GlsError):
    """A count query or page listing against GitLab failed."""

    def __init__(self, message: str, *, scope: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.scope = scope
        self.status_code = status_code


class StorageError(GlsError):
    """A cache transaction failed and was rolled back."""


class PickerError(GlsError):
    """The interactive picker could not be started."""
