"""
storage/export.py

Handoff export: produce a JSON document for one health record.

The exporter enforces the same access control as ``MedVault.get_record``:
the requester must be the owner, an explicit grantee, or a qualifying
emergency contact.  Non-owners get the record without its private notes
and without the sharing ledger.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from medvault.integrity import canonical_hash
from storage.models import AccessLevel

if TYPE_CHECKING:
    from medvault.service import MedVault

logger = logging.getLogger(__name__)


def _build_export_bundle(vault: MedVault, requester_username: str, record_id: int) -> dict[str, Any]:
    """
    Assemble all exportable data for a record.

    Raises:
        RecordNotFound / AccessDenied: propagated from ``get_record``.
    """
    record = vault.get_record(requester_username, record_id)
    decision = vault.evaluator.evaluate(record, requester_username)
    is_owner = decision.level == AccessLevel.owner

    content = record.content.model_dump(mode="json", exclude_none=True)
    if not is_owner:
        content.pop("private_notes", None)

    bundle: dict[str, Any] = {
        "export_generated_at": datetime.now(tz=timezone.utc).isoformat(),
        "access_level": decision.level,
        "record": {
            "id": record.id,
            "patient_uuid": record.patient_uuid,
            "title": record.title,
            "date": record.date.isoformat(),
            "record_type": record.record_type,
            "facility": record.facility,
            "status": record.status,
            "is_emergency_accessible": record.is_emergency_accessible,
            "content": content,
        },
        "integrity": {
            "canonical_hash": canonical_hash(record),
            "signature": record.signature,
            "verified_at": record.verified_at,
            "verified_by": record.verified_by,
        },
        "disclaimer": (
            "Patient-held copy. Confirm authenticity by verifying the "
            "signature against the issuing facility's public key."
        ),
    }

    if is_owner:
        bundle["shares"] = [
            {
                "grantee_username": s.grantee_username,
                "access_level": s.access_level,
                "shared_at": s.granted_at,
            }
            for s in record.shared_with
        ]

    return bundle


def export_json(vault: MedVault, requester_username: str, record_id: int) -> str:
    """
    Produce a pretty-printed JSON string for the record handoff.

    Args:
        vault:              The MedVault instance to read through.
        requester_username: Logged-in user (access control enforced).
        record_id:          The record to export.

    Returns:
        JSON string.
    """
    bundle = _build_export_bundle(vault, requester_username, record_id)
    vault.store.append_audit(requester_username, "export_json", record_id=record_id)
    logger.info("Exported record %d for %s", record_id, requester_username)
    return json.dumps(bundle, indent=2, ensure_ascii=False, default=str)
