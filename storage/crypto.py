"""
storage/crypto.py

At-rest encryption of record content.

Each :class:`storage.db.SQLiteStore` owns the Fernet it encrypts with,
built once by :func:`load_fernet`.  There is no module-level key: two
stores in one process may use different keys.

Key source, in order:

1. the ``data_key`` handed to the store;
2. the MEDVAULT_DATA_KEY environment variable;
3. a throwaway key generated on the spot (with a warning, since content
   written under it cannot be read after the store goes away).

Keys are URL-safe base64 32-byte values as produced by
``Fernet.generate_key()``.  Record signing lives in ``medvault.integrity``
and never touches this key.
"""

import json
import logging
import os

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

ENV_DATA_KEY = "MEDVAULT_DATA_KEY"


def load_fernet(key: str | bytes | None = None) -> Fernet:
    """
    Build a Fernet from *key*, falling back to MEDVAULT_DATA_KEY.

    Raises:
        ValueError: The key is not a valid Fernet key.
    """
    source = "argument"
    if not key:
        key = os.environ.get(ENV_DATA_KEY)
        source = ENV_DATA_KEY

    if not key:
        logger.warning(
            "No data key given and %s is unset; using a temporary key. "
            "Record content written now will be unreadable with any other key.",
            ENV_DATA_KEY,
        )
        return Fernet(Fernet.generate_key())

    if isinstance(key, str):
        key = key.encode("ascii")
    try:
        fernet = Fernet(key)
    except ValueError:
        logger.error("Data key from %s is not a valid Fernet key.", source)
        raise
    logger.debug("Data key loaded from %s.", source)
    return fernet


def encrypt_json(fernet: Fernet, data: dict) -> str:
    """JSON-encode *data* and return it as a Fernet token string."""
    plaintext = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
    return fernet.encrypt(plaintext).decode("ascii")


def decrypt_json(fernet: Fernet, token: str) -> dict:
    """
    Inverse of :func:`encrypt_json`.

    Raises:
        cryptography.fernet.InvalidToken: Wrong key, or the blob was altered.
    """
    try:
        plaintext = fernet.decrypt(token.encode("ascii"))
    except InvalidToken:
        logger.error("Record content could not be decrypted with this store's key.")
        raise
    return json.loads(plaintext)
