"""
medvault/service.py

The MedVault facade: the operations a route layer calls.

Responsibilities
----------------
- Wiring the identity directory, sharing ledger, access evaluator and
  lifecycle rules around one injected store.
- Validating inputs (Pydantic) before any write, and converting
  ``pydantic.ValidationError`` into :class:`ValidationFailure`.
- Enforcing the same read predicate for single fetches and listings, and
  owner-only writes.

Every operation takes the acting username, as resolved by the caller's
session layer.  An unknown acting username is refused with
:class:`AccessDenied`.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ValidationError

from medvault import lifecycle
from medvault.access import AccessEvaluator
from medvault.directory import IdentityDirectory
from medvault.errors import (
    AccessDenied,
    GranteeNotFound,
    RecordNotFound,
    StorageConflict,
    ValidationFailure,
)
from medvault.integrity import generate_keypair, verify_record
from medvault.ledger import SharingLedger
from storage.db import SQLiteStore
from storage.models import (
    AccessDecision,
    AccessLevel,
    AuditEntry,
    EmergencyContact,
    HealthRecord,
    Identity,
    ProfileUpdate,
    RecordDraft,
    RecordFilters,
    RecordStatus,
    Role,
    SharedAccess,
    ShareLevel,
)

logger = logging.getLogger(__name__)

def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _validate(model: type[BaseModel], data: Any) -> Any:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailure(str(exc)) from exc


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so naive and aware values compare."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _matches(record: HealthRecord, filters: RecordFilters) -> bool:
    if filters.query:
        needle = filters.query.casefold()
        haystack = f"{record.title}\n{record.content.notes}".casefold()
        if needle not in haystack:
            return False
    if filters.record_type and record.record_type.casefold() != filters.record_type.casefold():
        return False
    if filters.status and record.status != filters.status:
        return False
    if filters.date_from and _as_utc(record.date) < _as_utc(filters.date_from):
        return False
    if filters.date_to and _as_utc(record.date) > _as_utc(filters.date_to):
        return False
    return True


class MedVault:
    """
    Access-controlled health record operations.

    Args:
        store:        Backing store; defaults to a :class:`SQLiteStore` at
                      ``MEDVAULT_DB_PATH``.
        token_source: Optional patient-code draw function (see
                      :class:`IdentityDirectory`).
    """

    def __init__(self, store: SQLiteStore | None = None, token_source=None):
        self.store = store or SQLiteStore()
        self.directory = IdentityDirectory(self.store, token_source)
        self.ledger = SharingLedger(self.store, self.directory)
        self.evaluator = AccessEvaluator(self.directory)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _require_identity(self, username: str) -> Identity:
        identity = self.directory.resolve_by_username(username)
        if identity is None:
            raise AccessDenied(f"Unknown identity '{username}'.")
        return identity

    def _load(self, record_id: int) -> HealthRecord:
        record = self.store.get_record(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    def _owned(self, owner_username: str, record_id: int) -> tuple[HealthRecord, Identity]:
        record = self._load(record_id)
        owner = self.evaluator.require_owner(record, owner_username)
        return record, owner

    # -----------------------------------------------------------------------
    # Identities
    # -----------------------------------------------------------------------

    def register_identity(self, username: str, role: str, display_name: str | None = None) -> Identity:
        """Register a patient or GP.  Patients get their patient code here."""
        return self.directory.create_identity(username, role, display_name)

    def update_emergency_contacts(self, username: str, contacts: list[Any]) -> Identity:
        """
        Replace *username*'s emergency contacts.

        Every contact is validated, and every grantee resolved, before the
        list is written; one bad entry rejects the whole update.
        """
        identity = self._require_identity(username)
        parsed = [_validate(EmergencyContact, c) for c in contacts]

        for contact in parsed:
            if self.directory.resolve_by_username(contact.grantee_username) is None:
                raise GranteeNotFound(contact.grantee_username)

        updated = self.store.replace_emergency_contacts(identity.id, parsed, identity.username)
        logger.info("Updated %d emergency contacts for %s", len(parsed), identity.username)
        return updated

    def update_profile(self, username: str, **changes: Any) -> Identity:
        """Update blood type, allergies and the declared GP (``gp_username``)."""
        identity = self._require_identity(username)

        update = _validate(ProfileUpdate, changes)

        gp_username = update.gp_username
        if gp_username:
            gp = self.directory.resolve_by_username(gp_username)
            if gp is None or not gp.is_gp:
                raise ValidationFailure(f"'{gp_username}' is not a registered GP.")

        return self.store.update_profile(identity.id, update, identity.username)

    def issue_keypair(self, username: str) -> str:
        """
        Generate a signing keypair for *username*.

        The public key is stored against the identity; the private key PEM is
        returned to the caller and is not kept anywhere.

        Raises:
            ValidationFailure: The identity already has a public key.
            StorageConflict:   A concurrent call issued a key first.
        """
        identity = self._require_identity(username)
        if identity.public_key:
            raise ValidationFailure(f"A keypair was already issued for '{username}'.")

        public_pem, private_pem = generate_keypair()
        if not self.store.set_public_key(identity.id, public_pem, identity.username):
            raise StorageConflict(f"A keypair was issued concurrently for '{username}'.")

        logger.info("Issued signing keypair for %s", identity.username)
        return private_pem

    def lookup_patient_by_code(self, gp_username: str, code: str) -> Identity | None:
        """GP-only.  Returns ``None`` when no patient holds *code*."""
        gp = self._require_identity(gp_username)
        if not gp.is_gp:
            raise AccessDenied("Only GPs can look up patients.")
        patient = self.directory.resolve_by_patient_code(code)
        if patient is None or patient.role != Role.patient:
            return None
        return patient

    # -----------------------------------------------------------------------
    # Record creation
    # -----------------------------------------------------------------------

    def create_record(
        self,
        issuer_username: str,
        patient_uuid_or_code: str,
        draft: RecordDraft | dict[str, Any],
    ) -> HealthRecord:
        """
        Create a record for a patient.

        Patients may only create records for themselves (status
        ``accepted``).  GPs may create for any patient they can resolve
        (status ``pending``); the facility defaults to the GP's display name.

        If the draft carries a signature it must verify against the
        issuer's stored public key, over the final field values, or nothing
        is written.

        Raises:
            AccessDenied:      Unknown issuer, or a patient writing for
                               someone else.
            ValidationFailure: Malformed draft, unknown patient, missing
                               facility, or a signature that does not verify.
        """
        issuer = self._require_identity(issuer_username)
        draft = _validate(RecordDraft, draft)

        patient = self.directory.resolve_patient(patient_uuid_or_code)
        if patient is None:
            raise ValidationFailure(f"Patient not found: {patient_uuid_or_code}")

        if not issuer.is_gp and issuer.uuid != patient.uuid:
            raise AccessDenied("Patients may only create their own records.")

        facility = draft.facility or (issuer.display_name if issuer.is_gp else None)
        if not facility:
            raise ValidationFailure("Facility is required.")

        fields: dict[str, Any] = {
            "patient_uuid": patient.uuid,
            "title": draft.title,
            "date": draft.date,
            "record_type": draft.record_type,
            "content": draft.content.model_dump(mode="json"),
            "facility": facility,
            "status": lifecycle.initial_status(issuer, patient).value,
            "is_emergency_accessible": draft.is_emergency_accessible,
            "created_by": issuer.username,
        }

        if draft.signature:
            if not verify_record(fields, draft.signature, issuer.public_key):
                raise ValidationFailure("Invalid record signature.")
            fields.update(signature=draft.signature, verified_at=_now(), verified_by=facility)

        owner_grant = SharedAccess(
            grantee_username=patient.username,
            access_level=ShareLevel.view,
            granted_at=_now(),
        )
        try:
            return self.store.create_record(fields, initial_share=owner_grant)
        except sqlite3.IntegrityError as exc:
            raise ValidationFailure(f"Patient not found: {patient.uuid}") from exc

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def check_access(self, requester_username: str, record_id: int) -> AccessDecision:
        """Evaluate access without raising on deny."""
        return self.evaluator.evaluate(self._load(record_id), requester_username)

    def get_record(self, requester_username: str, record_id: int) -> HealthRecord:
        """
        Fetch one record through the access evaluator.

        Raises:
            RecordNotFound: No record has *record_id*.
            AccessDenied:   The evaluator refused the requester.
        """
        record = self._load(record_id)
        decision = self.evaluator.evaluate(record, requester_username)
        if not decision.allowed:
            logger.warning("Read denied: %s on record %d", requester_username, record_id)
            self.store.append_audit(requester_username, "access_denied", record_id=record_id)
            raise AccessDenied(f"Access to record {record_id} denied.")
        return record

    def _visible(self, requester: Identity) -> list[tuple[HealthRecord, AccessDecision]]:
        patient_uuids = [requester.uuid, *self.store.owners_listing_contact(requester.username)]
        candidates = self.store.find_candidate_records(
            patient_uuids=patient_uuids,
            grantee_username=requester.username,
            facility=requester.display_name if requester.is_gp else None,
        )

        visible = []
        for record in candidates:
            decision = self.evaluator.evaluate_identity(record, requester)
            if decision.allowed:
                visible.append((record, decision))
        return visible

    def list_records(
        self,
        requester_username: str,
        filters: RecordFilters | dict[str, Any] | None = None,
    ) -> list[HealthRecord]:
        """
        Every record the requester could fetch with :meth:`get_record`,
        newest first, narrowed by *filters*.

        A GP's facility match only makes a record a candidate; it is listed
        only if the evaluator also allows the GP to read it.
        """
        requester = self.directory.resolve_by_username(requester_username)
        if requester is None:
            return []
        filters = _validate(RecordFilters, filters or {})
        return [r for r, _ in self._visible(requester) if _matches(r, filters)]

    def list_shared_records(
        self,
        requester_username: str,
        filters: RecordFilters | dict[str, Any] | None = None,
    ) -> list[HealthRecord]:
        """Records the requester can read but does not own."""
        requester = self.directory.resolve_by_username(requester_username)
        if requester is None:
            return []
        filters = _validate(RecordFilters, filters or {})
        return [
            r for r, decision in self._visible(requester)
            if decision.level != AccessLevel.owner and _matches(r, filters)
        ]

    # -----------------------------------------------------------------------
    # Owner-only writes
    # -----------------------------------------------------------------------

    def share_record(
        self, owner_username: str, record_id: int, grantee_username: str, access_level: str = "view"
    ) -> HealthRecord:
        record, owner = self._owned(owner_username, record_id)
        return self.ledger.grant(record, grantee_username, access_level, actor=owner.username)

    def revoke_share(self, owner_username: str, record_id: int, grantee_username: str) -> HealthRecord:
        record, owner = self._owned(owner_username, record_id)
        return self.ledger.revoke(record, grantee_username, actor=owner.username)

    def list_grantees(self, owner_username: str, record_id: int) -> list[SharedAccess]:
        record, _ = self._owned(owner_username, record_id)
        return self.ledger.list_grantees(record)

    def set_emergency_accessible(
        self, owner_username: str, record_id: int, accessible: bool
    ) -> HealthRecord:
        record, owner = self._owned(owner_username, record_id)
        updated = self.store.set_emergency_accessible(record.id, bool(accessible), owner.username)
        if updated is None:
            raise RecordNotFound(record_id)
        logger.info("Record %d emergency access set to %s", record_id, bool(accessible))
        return updated

    def transition_status(self, owner_username: str, record_id: int, action: str) -> HealthRecord:
        """
        Accept or reject a pending record.

        Raises:
            InvalidTransition: The record is already accepted or rejected.
            StorageConflict:   Another transition landed between our read
                               and our conditional update.
        """
        record, owner = self._owned(owner_username, record_id)
        target = lifecycle.next_status(record.status, action)

        if not self.store.compare_and_set_status(
            record.id, RecordStatus.pending.value, target.value, owner.username
        ):
            raise StorageConflict(
                f"Record {record_id} changed status concurrently; reload and retry."
            )

        logger.info("Record %d moved pending -> %s by %s", record_id, target.value, owner.username)
        return self._load(record_id)

    def audit_trail(self, owner_username: str, record_id: int) -> list[AuditEntry]:
        record, _ = self._owned(owner_username, record_id)
        return self.store.get_audit_entries(record.id)

    # -----------------------------------------------------------------------
    # Integrity
    # -----------------------------------------------------------------------

    def verify_signature(
        self, record_id: int, public_key: str | None, requester_username: str | None = None
    ) -> bool:
        """
        Check a record's stored signature against *public_key*.

        On success the record's verified_at / verified_by are stamped.  A
        record that was never signed is reported ``False`` without any
        cryptographic work.
        """
        record = self._load(record_id)
        if not record.signature:
            return False

        if not verify_record(record, record.signature, public_key):
            logger.warning("Signature check failed for record %d", record_id)
            return False

        self.store.mark_verified(record.id, record.facility, requester_username or "anonymous")
        return True
