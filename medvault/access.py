"""
medvault/access.py

Access Control Evaluator: decides whether a requester may read a record,
and at what level.

Rules, in order (the first match wins):

1. Requester unknown                                   -> deny
2. record.patient_uuid == requester.uuid               -> owner
3. ledger entry for requester with access_level "view" -> shared
4. record is emergency-accessible and the owner lists
   the requester as a contact with can_view_records    -> emergency
5. otherwise                                           -> deny

Only the owner level permits writes.  Decisions are never cached: callers
pass a freshly loaded record and the directory re-reads identities on
every call, so a concurrent revoke is seen by the next evaluation.
"""

import logging

from medvault.directory import IdentityDirectory
from medvault.errors import AccessDenied
from medvault.ledger import SharingLedger
from storage.models import AccessDecision, AccessLevel, HealthRecord, Identity, ShareLevel

logger = logging.getLogger(__name__)


def _deny() -> AccessDecision:
    return AccessDecision(allowed=False)


class AccessEvaluator:
    def __init__(self, directory: IdentityDirectory):
        self._directory = directory

    def evaluate(self, record: HealthRecord, requester_username: str) -> AccessDecision:
        requester = self._directory.resolve_by_username(requester_username)
        if requester is None:
            return _deny()
        return self.evaluate_identity(record, requester)

    def evaluate_identity(self, record: HealthRecord, requester: Identity) -> AccessDecision:
        if record.patient_uuid == requester.uuid:
            return AccessDecision(allowed=True, level=AccessLevel.owner)

        entry = SharingLedger.entry_for(record, requester.username)
        if entry is not None and entry.access_level == ShareLevel.view:
            return AccessDecision(allowed=True, level=AccessLevel.shared)

        if record.is_emergency_accessible and self._is_emergency_viewer(record, requester):
            return AccessDecision(allowed=True, level=AccessLevel.emergency)

        return _deny()

    def _is_emergency_viewer(self, record: HealthRecord, requester: Identity) -> bool:
        owner = self._directory.resolve_by_uuid(record.patient_uuid)
        if owner is None:
            return False
        return any(
            contact.grantee_username == requester.username and contact.can_view_records
            for contact in owner.emergency_contacts
        )

    def require_owner(self, record: HealthRecord, requester_username: str) -> Identity:
        """
        Return the requester's identity if they own *record*.

        Raises:
            AccessDenied: For anyone else, including shared and emergency
                viewers who may read the record.
        """
        requester = self._directory.resolve_by_username(requester_username)
        if requester is None or not self.evaluate_identity(record, requester).can_write:
            logger.warning(
                "Write denied: %s is not the owner of record %d", requester_username, record.id
            )
            raise AccessDenied(f"Only the record owner may modify record {record.id}.")
        return requester
