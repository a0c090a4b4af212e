"""
medvault/lifecycle.py

Record Lifecycle State Machine.

    pending --accept--> accepted
    pending --reject--> rejected

accepted and rejected are terminal.  Status never gates reads; it tells the
consumer whether a GP-submitted record has been confirmed by the patient.
"""

from medvault.errors import InvalidTransition, ValidationFailure
from storage.models import Identity, RecordStatus

ACTIONS = {
    "accept": RecordStatus.accepted,
    "reject": RecordStatus.rejected,
}

TERMINAL = frozenset({RecordStatus.accepted, RecordStatus.rejected})


def initial_status(issuer: Identity, patient: Identity) -> RecordStatus:
    """Self-authored records skip review; anything else waits for the patient."""
    if issuer.uuid == patient.uuid:
        return RecordStatus.accepted
    return RecordStatus.pending


def next_status(current: str, action: str) -> RecordStatus:
    """
    Return the status *action* moves a record to from *current*.

    Raises:
        ValidationFailure: *action* is not ``accept`` or ``reject``.
        InvalidTransition: *current* is terminal.
    """
    if action not in ACTIONS:
        raise ValidationFailure(f"Unknown status action '{action}'; use one of {sorted(ACTIONS)}.")

    current = RecordStatus(current)
    if current in TERMINAL:
        raise InvalidTransition(current.value, action)
    return ACTIONS[action]
