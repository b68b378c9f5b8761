"""Error types shared by the core and its adapters."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when a configuration value is outside its accepted range."""


class MissingSecretError(ValueError):
    """Raised when a token is verified without any signing secret."""


class UniqueViolation(Exception):
    """Raised by storage adapters when a unique constraint rejects a write.

    Adapters translate their driver-specific error into this type so the
    ledger never has to inspect driver error messages.
    """

    def __init__(self, constraint: str, detail: str = "") -> None:
        super().__init__(f"Unique constraint violated: {constraint}" + (f" ({detail})" if detail else ""))
        self.constraint = constraint
        self.detail = detail
