# src/extwork/errors.py
from __future__ import annotations


class ExtworkError(Exception):
    """Base for failures raised inside the extwork client."""


class TransportError(ExtworkError):
    """Broker socket failed or was closed by the broker. Triggers a reconnect."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class PersistenceUnavailable(ExtworkError):
    """State cache could not be read or written. Defaults are used instead."""
