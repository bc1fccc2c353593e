"""Error taxonomy for the payroll engine."""

from __future__ import annotations


class PayrollError(Exception):
    """Base class for payroll engine errors."""


class ConflictError(PayrollError):
    """Raised when a write would break a uniqueness or non-overlap rule."""


class ValidationError(PayrollError):
    """Raised when rate or range values are malformed."""

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class ImmutableRecordError(PayrollError):
    """Raised on an attempt to mutate a record that is append-only."""


class NotFoundError(PayrollError):
    """Raised when a referenced record does not exist."""
