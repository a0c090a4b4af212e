"""
medvault/errors.py

Typed failures raised by the medvault core.

Identity lookups never raise: an unknown username or patient code is a
plain ``None``.  Signature checks never raise either; they return ``False``.
Everything below is surfaced to the caller unchanged.
"""


class MedVaultError(Exception):
    """Base class for all medvault failures."""


class AccessDenied(MedVaultError, PermissionError):
    """The requester may not perform this read or write on the record."""


class ValidationFailure(MedVaultError, ValueError):
    """Input was rejected before any state was mutated."""


class GranteeNotFound(ValidationFailure):
    """A share or emergency contact named a username that does not exist."""

    def __init__(self, username: str):
        super().__init__(f"User not found: {username}")
        self.username = username


class RecordNotFound(MedVaultError, LookupError):
    def __init__(self, record_id: int):
        super().__init__(f"Record {record_id} not found")
        self.record_id = record_id


class InvalidTransition(MedVaultError):
    """A status change was requested from a terminal state."""

    def __init__(self, current: str, action: str):
        super().__init__(f"Cannot {action} a record that is already {current}")
        self.current = current
        self.action = action


class StorageConflict(MedVaultError):
    """A concurrent update won the race; the caller may retry."""
