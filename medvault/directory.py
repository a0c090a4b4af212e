"""
medvault/directory.py

Identity Directory: resolves usernames, uuids and patient codes to
identities, and registers new identities.

Patient codes are six uppercase hex characters drawn from ``secrets``.
A drawn code is checked against the store on every attempt; the UNIQUE
constraint on identities.patient_code is the backstop when two
registrations race for the same code.
"""

import logging
import secrets
import sqlite3
import uuid as uuid_lib
from typing import Callable

from medvault.errors import StorageConflict, ValidationFailure
from storage.db import SQLiteStore
from storage.models import Identity, Role

logger = logging.getLogger(__name__)

PATIENT_CODE_BYTES = 3

# Inserts retried after a storage-level patient code collision.
_MAX_INSERT_ATTEMPTS = 5


def _random_token() -> str:
    return secrets.token_hex(PATIENT_CODE_BYTES)


class IdentityDirectory:
    """
    Lookup and registration of identities.

    Args:
        store:        The backing store.
        token_source: Zero-argument callable returning a hex string, used to
                      draw patient codes.  Tests inject a scripted source to
                      force collisions.
    """

    def __init__(self, store: SQLiteStore, token_source: Callable[[], str] | None = None):
        self._store = store
        self._token_source = token_source or _random_token

    # -----------------------------------------------------------------------
    # Lookups (NotFound is None, never an exception)
    # -----------------------------------------------------------------------

    def resolve_by_username(self, username: str) -> Identity | None:
        """Exact, case-sensitive username match."""
        if not username:
            return None
        identity = self._store.get_identity("username", username)
        logger.debug("resolve_by_username(%s): %s", username, "hit" if identity else "miss")
        return identity

    def resolve_by_uuid(self, identity_uuid: str) -> Identity | None:
        if not identity_uuid:
            return None
        return self._store.get_identity("uuid", identity_uuid)

    def resolve_by_patient_code(self, code: str) -> Identity | None:
        if not code:
            return None
        identity = self._store.get_identity("patient_code", code.strip().upper())
        logger.debug("resolve_by_patient_code: %s", "hit" if identity else "miss")
        return identity

    def resolve_patient(self, uuid_or_code: str) -> Identity | None:
        """Resolve a patient by uuid first, then by patient code."""
        identity = self.resolve_by_uuid(uuid_or_code) or self.resolve_by_patient_code(uuid_or_code)
        if identity is None or identity.role != Role.patient:
            return None
        return identity

    # -----------------------------------------------------------------------
    # Patient codes
    # -----------------------------------------------------------------------

    def generate_unique_patient_code(self) -> str:
        """
        Draw codes until one is not held by any identity.

        Each draw re-queries the store, so a code taken by a concurrent
        registration since the last draw is seen.
        """
        while True:
            code = self._token_source().upper()
            if self._store.get_identity("patient_code", code) is None:
                return code
            logger.debug("Patient code collision, drawing again")

    # -----------------------------------------------------------------------
    # Registration
    # -----------------------------------------------------------------------

    def create_identity(self, username: str, role: str, display_name: str | None = None) -> Identity:
        """
        Register a new identity.

        Patients receive a patient code here, exactly once.  GPs never do.

        Raises:
            ValidationFailure: Unknown role, empty username, or the username
                is already registered.
            StorageConflict:   Patient code collisions persisted past every
                insert attempt.
        """
        try:
            role = Role(role).value
        except ValueError:
            raise ValidationFailure(f"Invalid role '{role}'.") from None

        username = (username or "").strip()
        if not username:
            raise ValidationFailure("Username is required.")
        if self.resolve_by_username(username) is not None:
            raise ValidationFailure(f"Username '{username}' is already registered.")

        for attempt in range(1, _MAX_INSERT_ATTEMPTS + 1):
            patient_code = self.generate_unique_patient_code() if role == Role.patient else None
            try:
                return self._store.create_identity(
                    uuid=str(uuid_lib.uuid4()),
                    username=username,
                    role=role,
                    display_name=display_name or username,
                    patient_code=patient_code,
                )
            except sqlite3.IntegrityError as exc:
                if "patient_code" not in str(exc):
                    raise ValidationFailure(
                        f"Username '{username}' is already registered."
                    ) from exc
                logger.warning(
                    "Patient code taken during insert (attempt %d/%d), redrawing",
                    attempt, _MAX_INSERT_ATTEMPTS,
                )

        raise StorageConflict("Could not assign a unique patient code.")
