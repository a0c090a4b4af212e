"""
medvault/ledger.py

Sharing Ledger: the per-record ordered list of grants.

A grant replaces any earlier entry for the same username and moves it to
the end of the list; revoking a username that holds no entry is a
successful no-op.  Both are single store transactions.
"""

import logging

from medvault.directory import IdentityDirectory
from medvault.errors import GranteeNotFound, RecordNotFound, ValidationFailure
from storage.db import SQLiteStore
from storage.models import HealthRecord, SharedAccess, ShareLevel

logger = logging.getLogger(__name__)


class SharingLedger:
    def __init__(self, store: SQLiteStore, directory: IdentityDirectory):
        self._store = store
        self._directory = directory

    def grant(
        self,
        record: HealthRecord,
        grantee_username: str,
        access_level: str,
        actor: str,
    ) -> HealthRecord:
        """
        Grant *grantee_username* access to *record* at *access_level*.

        Raises:
            ValidationFailure: *access_level* is not ``view`` or ``emergency``.
            GranteeNotFound:   No identity has that username.
            RecordNotFound:    The record vanished before the write.
        """
        try:
            level = ShareLevel(access_level).value
        except ValueError:
            raise ValidationFailure(
                f"access_level must be one of {[s.value for s in ShareLevel]}"
            ) from None

        grantee = self._directory.resolve_by_username(grantee_username)
        if grantee is None:
            raise GranteeNotFound(grantee_username)

        updated = self._store.grant_share(record.id, grantee.username, level, actor)
        if updated is None:
            raise RecordNotFound(record.id)
        return updated

    def revoke(self, record: HealthRecord, grantee_username: str, actor: str) -> HealthRecord:
        updated = self._store.revoke_share(record.id, grantee_username, actor)
        if updated is None:
            raise RecordNotFound(record.id)
        return updated

    @staticmethod
    def list_grantees(record: HealthRecord) -> list[SharedAccess]:
        return list(record.shared_with)

    @staticmethod
    def entry_for(record: HealthRecord, username: str) -> SharedAccess | None:
        for entry in record.shared_with:
            if entry.grantee_username == username:
                return entry
        return None
