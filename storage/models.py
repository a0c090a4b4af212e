"""
storage/models.py

Pydantic v2 data models for the medvault record store.

These models describe the shape of data flowing between the persistence
layer (db.py) and the access-control core (medvault/).  They are NOT ORM
models; persistence is handled entirely by db.py.
"""

from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Role(str, Enum):
    """The two roles a registered identity can hold."""
    patient = "patient"
    gp = "gp"


class RecordStatus(str, Enum):
    """Lifecycle states of a health record."""
    pending = "pending"      # GP-submitted, awaiting patient confirmation
    accepted = "accepted"
    rejected = "rejected"


class ShareLevel(str, Enum):
    """Access level stored against a grantee in a record's ledger."""
    view = "view"
    emergency = "emergency"


class AccessLevel(str, Enum):
    """Level at which the evaluator allows a requester to read a record."""
    owner = "owner"          # full read + write over mutable fields
    shared = "shared"        # explicit ledger grant, read-only
    emergency = "emergency"  # emergency-contact fallback, read-only


# ---------------------------------------------------------------------------
# Identity models
# ---------------------------------------------------------------------------


class ContactMeta(BaseModel):
    """Descriptive details kept alongside an emergency contact."""
    name: str = ""
    relationship: str = ""
    phone: str = ""
    email: str | None = None


class EmergencyContact(BaseModel):
    """A username a patient designates as an emergency contact."""
    grantee_username: str = Field(min_length=1)
    can_view_records: bool = False
    contact_meta: ContactMeta = Field(default_factory=ContactMeta)


class GpLink(BaseModel):
    """The GP a patient declares as theirs.  Informational, not a grant."""
    gp_username: str


class Identity(BaseModel):
    """A registered account as stored in the identities table."""
    id: int
    uuid: str
    username: str
    role: Role
    display_name: str
    patient_code: str | None = Field(
        default=None, description="Short lookup code, patients only."
    )
    emergency_contacts: list[EmergencyContact] = Field(default_factory=list)
    public_key: str | None = Field(
        default=None, description="PEM (SPKI) public key for signature checks."
    )
    gp_link: GpLink | None = None
    blood_type: str | None = None
    allergies: list[str] = Field(default_factory=list)
    created_at: str = Field(description="ISO-8601 UTC timestamp.")

    class Config:
        use_enum_values = True

    @property
    def is_gp(self) -> bool:
        return self.role == Role.gp


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------


class RecordContent(BaseModel):
    """
    Structured clinical body of a record.

    Unknown keys are preserved so issuers can attach extra structured data;
    they take part in the canonical hash like the named fields.
    """
    notes: str
    diagnosis: str | None = None
    treatment: str | None = None
    private_notes: str | None = None

    class Config:
        extra = "allow"


class RecordDraft(BaseModel):
    """Validated input for creating a record."""
    title: str = Field(min_length=1)
    date: datetime
    record_type: str = Field(min_length=1)
    content: RecordContent
    facility: str | None = Field(
        default=None,
        description="Issuing organisation; defaults to the GP's display name.",
    )
    is_emergency_accessible: bool = False
    signature: str | None = Field(
        default=None, description="Base64 signature over the canonical hash."
    )


class SharedAccess(BaseModel):
    """One entry of a record's sharing ledger."""
    grantee_username: str
    access_level: ShareLevel
    granted_at: str = Field(description="ISO-8601 UTC timestamp.")

    class Config:
        use_enum_values = True


class HealthRecord(BaseModel):
    """A health record with its ledger and integrity metadata."""
    id: int
    patient_uuid: str
    title: str
    date: datetime
    record_type: str
    facility: str
    content: RecordContent
    status: RecordStatus
    is_emergency_accessible: bool = False
    shared_with: list[SharedAccess] = Field(default_factory=list)
    signature: str | None = None
    verified_at: str | None = None
    verified_by: str | None = None
    created_by: str
    created_at: str

    class Config:
        use_enum_values = True


class ProfileUpdate(BaseModel):
    """Profile fields a user may change after registration.  Only set fields are written."""
    blood_type: str | None = None
    allergies: list[str] | None = None
    gp_username: str | None = Field(
        default=None, description="Username of the GP the patient declares; must be a GP."
    )

    class Config:
        extra = "forbid"


class RecordFilters(BaseModel):
    """Optional narrowing applied by record listings."""
    query: str | None = Field(
        default=None, description="Case-insensitive match on title or notes."
    )
    record_type: str | None = None
    status: RecordStatus | None = None
    date_from: datetime | None = None
    date_to: datetime | None = Field(
        default=None,
        description="Inclusive upper bound.  A bare date covers that whole day.",
    )

    class Config:
        use_enum_values = True

    @field_validator("date_to", mode="before")
    @classmethod
    def bare_date_means_end_of_day(cls, v):
        if isinstance(v, str) and len(v.strip()) == 10:
            try:
                v = date.fromisoformat(v.strip())
            except ValueError:
                return v
        if isinstance(v, date) and not isinstance(v, datetime):
            return datetime.combine(v, time.max)
        return v


class AccessDecision(BaseModel):
    """Outcome of evaluating one (record, requester) pair.  Immutable."""
    allowed: bool
    level: AccessLevel | None = None

    class Config:
        use_enum_values = True
        frozen = True

    @property
    def can_write(self) -> bool:
        return self.allowed and self.level == AccessLevel.owner


class AuditEntry(BaseModel):
    """One row of the append-only audit log."""
    id: int
    actor: str
    action: str
    record_id: int | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
    timestamp: str
