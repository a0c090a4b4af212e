"""
medvault/integrity.py

Record Integrity Engine: canonical hashing, RSA signing and verification.

The signed payload is the hex SHA-256 digest of a canonical serialisation of
six record fields, taken in a fixed order (HASHED_FIELDS).  Nested content
keys are sorted and ``None`` values dropped, so a record built from a dict
and the same record loaded from the store hash identically.

Signatures are RSASSA-PKCS1-v1_5 with SHA-256, base64 encoded.  Keys are PEM:
SPKI for public keys, unencrypted PKCS#8 for private keys.

Public API
----------
canonical_hash(record) -> str
sign_record(record, private_key_pem) -> str
verify_record(record, signature, public_key_pem) -> bool
generate_keypair() -> (public_key_pem, private_key_pem)
"""

import base64
import binascii
import hashlib
import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from pydantic import BaseModel, TypeAdapter

logger = logging.getLogger(__name__)

HASHED_FIELDS = ("patient_uuid", "title", "date", "record_type", "content", "facility")

RSA_KEY_SIZE = 2048
_PUBLIC_EXPONENT = 65537

_DATETIME = TypeAdapter(datetime)


# ---------------------------------------------------------------------------
# Canonical hash
# ---------------------------------------------------------------------------


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _normalise(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name == "date":
        if not isinstance(value, datetime):
            value = _DATETIME.validate_python(value)
        return value.isoformat()
    if name == "content":
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        return {k: v for k, v in dict(value).items() if v is not None}
    return value


def canonical_hash(record: Any) -> str:
    """
    Return the hex SHA-256 digest of the hashed field subset of *record*.

    *record* may be a :class:`~storage.models.HealthRecord` or any mapping
    with the same field names.
    """
    pairs = [[name, _normalise(name, _field(record, name))] for name in HASHED_FIELDS]
    serialised = json.dumps(
        pairs, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )
    return hashlib.sha256(serialised.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Signing / verification
# ---------------------------------------------------------------------------


def sign_record(record: Any, private_key_pem: str) -> str:
    """
    Sign the canonical hash of *record* and return a base64 signature.

    Raises:
        ValueError: If *private_key_pem* cannot be parsed.
    """
    private_key = serialization.load_pem_private_key(
        private_key_pem.encode("utf-8"), password=None
    )
    digest = canonical_hash(record)
    signature = private_key.sign(digest.encode("ascii"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def verify_record(record: Any, signature: str | None, public_key_pem: str | None) -> bool:
    """
    Check *signature* against the recomputed canonical hash of *record*.

    Never raises: a missing signature or key short-circuits to ``False``
    without touching the crypto backend, and any parsing or verification
    failure is logged and reported as ``False``.
    """
    if not signature or not public_key_pem:
        return False

    try:
        public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
        raw_signature = base64.b64decode(signature, validate=True)
        public_key.verify(
            raw_signature,
            canonical_hash(record).encode("ascii"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except InvalidSignature:
        logger.warning("Record signature does not match its content.")
        return False
    except (ValueError, TypeError, binascii.Error, UnsupportedAlgorithm) as exc:
        logger.warning("Record signature could not be checked: %s", exc)
        return False

    return True


# ---------------------------------------------------------------------------
# Key generation
# ---------------------------------------------------------------------------


def generate_keypair() -> tuple[str, str]:
    """Return a fresh ``(public_key_pem, private_key_pem)`` RSA-2048 pair."""
    private_key = rsa.generate_private_key(public_exponent=_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE)

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")

    return public_pem, private_pem
