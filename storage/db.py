"""
storage/db.py

SQLite backend for the medvault record store.

Schema
------
identities : registered accounts (patient or gp)
emergency_contacts : ordered emergency contacts per identity
records : health record metadata + encrypted content blob
record_shares : sharing ledger, one row per (record, grantee)
audit_log : append-only action log

Record content (notes, diagnosis, treatment, private notes) is stored only
inside records.content_blob, which is encrypted by storage.crypto before
being persisted.

Every public method opens its own short-lived connection and runs as a
single transaction.  Read-modify-write operations on one record (ledger
grants, status changes) take the write lock up front with
``BEGIN IMMEDIATE`` so two callers can never interleave on the same row.

Usage
-----
    from storage.db import SQLiteStore
    store = SQLiteStore()          # path from MEDVAULT_DB_PATH
    store = SQLiteStore(tmp_path / "vault.db", data_key=Fernet.generate_key())
"""

import functools
import json
import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from storage.crypto import decrypt_json, encrypt_json, load_fernet
from storage.models import (
    AuditEntry,
    ContactMeta,
    EmergencyContact,
    GpLink,
    HealthRecord,
    Identity,
    ProfileUpdate,
    SharedAccess,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Database location / tuning
# ---------------------------------------------------------------------------

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_DB_PATH: Path = _PROJECT_ROOT / "data" / "medvault.db"

_ENV_DB_PATH = "MEDVAULT_DB_PATH"
_ENV_RETRIES = "MEDVAULT_DB_RETRIES"
_DEFAULT_RETRIES = 3
_RETRY_DELAY_SECONDS = 0.05

# Columns callers may look identities up by.
_IDENTITY_KEYS = ("id", "uuid", "username", "patient_code")



# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_DDL = """
CREATE TABLE IF NOT EXISTS identities (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid            TEXT    NOT NULL UNIQUE,
    username        TEXT    NOT NULL UNIQUE,   -- case-sensitive
    role            TEXT    NOT NULL CHECK(role IN ('patient', 'gp')),
    display_name    TEXT    NOT NULL,
    patient_code    TEXT    UNIQUE,            -- NULL for GPs
    public_key      TEXT,                      -- PEM, written once
    gp_username     TEXT,
    blood_type      TEXT,
    allergies       TEXT    NOT NULL DEFAULT '[]',   -- JSON array
    created_at      TEXT    NOT NULL                 -- ISO-8601 UTC
);

CREATE TABLE IF NOT EXISTS emergency_contacts (
    identity_id      INTEGER NOT NULL REFERENCES identities(id) ON DELETE CASCADE,
    position         INTEGER NOT NULL,
    grantee_username TEXT    NOT NULL,
    can_view_records INTEGER NOT NULL DEFAULT 0,
    contact_meta     TEXT    NOT NULL DEFAULT '{}',  -- JSON object
    PRIMARY KEY (identity_id, position)
);

CREATE INDEX IF NOT EXISTS idx_emergency_contacts_grantee
    ON emergency_contacts(grantee_username);

CREATE TABLE IF NOT EXISTS records (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    patient_uuid            TEXT    NOT NULL REFERENCES identities(uuid),
    title                   TEXT    NOT NULL,
    date                    TEXT    NOT NULL,    -- ISO-8601
    record_type             TEXT    NOT NULL,
    facility                TEXT    NOT NULL,
    content_blob            TEXT    NOT NULL,    -- Fernet token from crypto.py
    status                  TEXT    NOT NULL
                                CHECK(status IN ('pending', 'accepted', 'rejected')),
    is_emergency_accessible INTEGER NOT NULL DEFAULT 0,
    signature               TEXT,
    verified_at             TEXT,
    verified_by             TEXT,
    created_by              TEXT    NOT NULL,
    created_at              TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_patient ON records(patient_uuid);
CREATE INDEX IF NOT EXISTS idx_records_facility ON records(facility);

CREATE TABLE IF NOT EXISTS record_shares (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,   -- ledger order
    record_id        INTEGER NOT NULL REFERENCES records(id),
    grantee_username TEXT    NOT NULL,
    access_level     TEXT    NOT NULL CHECK(access_level IN ('view', 'emergency')),
    granted_at       TEXT    NOT NULL,
    UNIQUE(record_id, grantee_username)
);

CREATE TABLE IF NOT EXISTS audit_log (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    actor     TEXT    NOT NULL,
    action    TEXT    NOT NULL,
    record_id INTEGER REFERENCES records(id),
    detail    TEXT    NOT NULL DEFAULT '{}',
    timestamp TEXT    NOT NULL                -- ISO-8601 UTC
);
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(tz=timezone.utc).isoformat()


def _retry_on_busy(method):
    """
    Retry a store method when SQLite reports the database as locked or busy.

    Only lock contention is retried, a bounded number of times
    (``self.retries``).  Any other error, or the last failed attempt,
    propagates to the caller.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        attempt = 1
        while True:
            try:
                return method(self, *args, **kwargs)
            except sqlite3.OperationalError as exc:
                message = str(exc).lower()
                transient = "locked" in message or "busy" in message
                if not transient or attempt >= self.retries:
                    raise
                logger.warning(
                    "%s: store busy (%s), retry %d/%d",
                    method.__name__, exc, attempt, self.retries - 1,
                )
                time.sleep(_RETRY_DELAY_SECONDS * attempt)
                attempt += 1

    return wrapper


def _contact_from_row(row: sqlite3.Row) -> EmergencyContact:
    return EmergencyContact(
        grantee_username=row["grantee_username"],
        can_view_records=bool(row["can_view_records"]),
        contact_meta=ContactMeta(**json.loads(row["contact_meta"])),
    )


def _share_from_row(row: sqlite3.Row) -> SharedAccess:
    return SharedAccess(
        grantee_username=row["grantee_username"],
        access_level=row["access_level"],
        granted_at=row["granted_at"],
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SQLiteStore:
    """
    Repository for identities, records, sharing ledgers and the audit log.

    Instances are cheap; they hold the file path, retry policy and the
    Fernet used for record content (from *data_key*, else MEDVAULT_DATA_KEY).
    Pass one into :class:`medvault.service.MedVault` (tests use a
    ``tmp_path`` file so every test starts from an empty database).
    """

    def __init__(
        self,
        path: str | Path | None = None,
        retries: int | None = None,
        busy_timeout: float = 5.0,
        data_key: str | bytes | None = None,
    ):
        self.path = Path(path or os.environ.get(_ENV_DB_PATH) or _DEFAULT_DB_PATH)
        if retries is None:
            retries = int(os.environ.get(_ENV_RETRIES, _DEFAULT_RETRIES))
        self.retries = max(1, retries)
        self.busy_timeout = busy_timeout
        self._fernet = load_fernet(data_key)
        self.init_db()

    # -----------------------------------------------------------------------
    # Connections
    # -----------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        """
        Open (or create) the SQLite database and return a connection.

        :class:`sqlite3.Row` is set as the row_factory so rows behave like
        dicts.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose work commits on success and rolls back on error."""
        conn = self._connect()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            with conn:
                yield conn
        finally:
            conn.close()

    @_retry_on_busy
    def init_db(self) -> None:
        """
        Create all tables if they do not already exist.

        Safe to call multiple times (idempotent).
        """
        with self._transaction() as conn:
            conn.executescript(_DDL)
        logger.info("Database initialised at %s", self.path)

    # -----------------------------------------------------------------------
    # Row loading
    # -----------------------------------------------------------------------

    def _load_identity(
        self, conn: sqlite3.Connection, column: str, value: Any
    ) -> Identity | None:
        if column not in _IDENTITY_KEYS:
            raise ValueError(f"Cannot look identities up by '{column}'")
        row = conn.execute(
            f"SELECT * FROM identities WHERE {column} = ?", (value,)
        ).fetchone()
        if row is None:
            return None

        contacts = conn.execute(
            "SELECT * FROM emergency_contacts WHERE identity_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()

        return Identity(
            id=row["id"],
            uuid=row["uuid"],
            username=row["username"],
            role=row["role"],
            display_name=row["display_name"],
            patient_code=row["patient_code"],
            emergency_contacts=[_contact_from_row(c) for c in contacts],
            public_key=row["public_key"],
            gp_link=GpLink(gp_username=row["gp_username"]) if row["gp_username"] else None,
            blood_type=row["blood_type"],
            allergies=json.loads(row["allergies"]),
            created_at=row["created_at"],
        )

    def _load_record(self, conn: sqlite3.Connection, record_id: int) -> HealthRecord | None:
        row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
        return self._record_from_row(conn, row) if row else None

    def _record_from_row(self, conn: sqlite3.Connection, row: sqlite3.Row) -> HealthRecord:
        shares = conn.execute(
            "SELECT * FROM record_shares WHERE record_id = ? ORDER BY id",
            (row["id"],),
        ).fetchall()

        return HealthRecord(
            id=row["id"],
            patient_uuid=row["patient_uuid"],
            title=row["title"],
            date=row["date"],
            record_type=row["record_type"],
            facility=row["facility"],
            content=decrypt_json(self._fernet, row["content_blob"]),
            status=row["status"],
            is_emergency_accessible=bool(row["is_emergency_accessible"]),
            shared_with=[_share_from_row(s) for s in shares],
            signature=row["signature"],
            verified_at=row["verified_at"],
            verified_by=row["verified_by"],
            created_by=row["created_by"],
            created_at=row["created_at"],
        )

    # -----------------------------------------------------------------------
    # Identity operations
    # -----------------------------------------------------------------------

    @_retry_on_busy
    def create_identity(
        self,
        *,
        uuid: str,
        username: str,
        role: str,
        display_name: str,
        patient_code: str | None,
    ) -> Identity:
        """
        Insert a new identity and return it.

        Raises:
            sqlite3.IntegrityError: If the username, uuid or patient code is
                already taken.  The caller decides whether to redraw.
        """
        with self._transaction(immediate=True) as conn:
            cur = conn.execute(
                """
                INSERT INTO identities
                    (uuid, username, role, display_name, patient_code, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (uuid, username, role, display_name, patient_code, _now()),
            )
            identity_id = cur.lastrowid
            self.append_audit(username, "identity_created", detail={"role": role}, _conn=conn)
            identity = self._load_identity(conn, "id", identity_id)

        logger.info("Created identity id=%d role=%s", identity_id, role)
        return identity

    @_retry_on_busy
    def get_identity(self, column: str, value: Any) -> Identity | None:
        """Return the identity whose *column* equals *value*, or ``None``."""
        with self._transaction() as conn:
            return self._load_identity(conn, column, value)

    @_retry_on_busy
    def owners_listing_contact(self, grantee_username: str) -> list[str]:
        """
        Return the uuids of identities that list *grantee_username* as an
        emergency contact allowed to view records.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT i.uuid
                FROM identities i
                JOIN emergency_contacts c ON c.identity_id = i.id
                WHERE c.grantee_username = ? AND c.can_view_records = 1
                """,
                (grantee_username,),
            ).fetchall()
        return [r["uuid"] for r in rows]

    @_retry_on_busy
    def replace_emergency_contacts(
        self, identity_id: int, contacts: list[EmergencyContact], actor: str
    ) -> Identity | None:
        """Replace the whole ordered contact list of an identity in one transaction."""
        with self._transaction(immediate=True) as conn:
            exists = conn.execute(
                "SELECT 1 FROM identities WHERE id = ?", (identity_id,)
            ).fetchone()
            if exists is None:
                return None

            conn.execute(
                "DELETE FROM emergency_contacts WHERE identity_id = ?", (identity_id,)
            )
            conn.executemany(
                """
                INSERT INTO emergency_contacts
                    (identity_id, position, grantee_username, can_view_records, contact_meta)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (
                        identity_id,
                        position,
                        c.grantee_username,
                        int(c.can_view_records),
                        json.dumps(c.contact_meta.model_dump()),
                    )
                    for position, c in enumerate(contacts)
                ],
            )
            self.append_audit(
                actor, "emergency_contacts_updated",
                detail={"count": len(contacts)}, _conn=conn,
            )
            return self._load_identity(conn, "id", identity_id)

    @_retry_on_busy
    def update_profile(self, identity_id: int, update: ProfileUpdate, actor: str) -> Identity | None:
        """
        Write the fields explicitly set on *update* (blood type, allergies,
        GP link).  Fields left unset keep their stored value.
        """
        values = update.model_dump(exclude_unset=True)
        if "allergies" in values:
            values["allergies"] = json.dumps(values["allergies"] or [])

        with self._transaction(immediate=True) as conn:
            if values:
                assignments = ", ".join(f"{column} = ?" for column in values)
                conn.execute(
                    f"UPDATE identities SET {assignments} WHERE id = ?",
                    (*values.values(), identity_id),
                )
                self.append_audit(
                    actor, "profile_updated", detail={"fields": sorted(values)}, _conn=conn,
                )
            return self._load_identity(conn, "id", identity_id)

    @_retry_on_busy
    def set_public_key(self, identity_id: int, public_key: str, actor: str) -> bool:
        """
        Store *public_key* unless the identity already has one.

        Returns:
            ``True`` if the key was written, ``False`` if one was already set.
        """
        with self._transaction(immediate=True) as conn:
            cur = conn.execute(
                "UPDATE identities SET public_key = ? WHERE id = ? AND public_key IS NULL",
                (public_key, identity_id),
            )
            written = cur.rowcount == 1
            if written:
                self.append_audit(actor, "public_key_issued", _conn=conn)
        return written

    # -----------------------------------------------------------------------
    # Record operations
    # -----------------------------------------------------------------------

    @_retry_on_busy
    def create_record(
        self,
        record: dict[str, Any],
        initial_share: SharedAccess | None = None,
    ) -> HealthRecord:
        """
        Create a record, its encrypted content blob and initial ledger entry.

        *record* carries: patient_uuid, title, date (datetime), record_type,
        facility, content (dict), status, is_emergency_accessible, signature,
        verified_at, verified_by, created_by.

        Raises:
            sqlite3.IntegrityError: If patient_uuid names no identity.
        """
        now = _now()
        encrypted = encrypt_json(self._fernet, record["content"])

        with self._transaction(immediate=True) as conn:
            cur = conn.execute(
                """
                INSERT INTO records
                    (patient_uuid, title, date, record_type, facility, content_blob,
                     status, is_emergency_accessible, signature, verified_at,
                     verified_by, created_by, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record["patient_uuid"],
                    record["title"],
                    record["date"].isoformat(),
                    record["record_type"],
                    record["facility"],
                    encrypted,
                    record["status"],
                    int(record.get("is_emergency_accessible", False)),
                    record.get("signature"),
                    record.get("verified_at"),
                    record.get("verified_by"),
                    record["created_by"],
                    now,
                ),
            )
            record_id = cur.lastrowid

            if initial_share is not None:
                conn.execute(
                    """
                    INSERT INTO record_shares
                        (record_id, grantee_username, access_level, granted_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        record_id,
                        initial_share.grantee_username,
                        initial_share.access_level,
                        initial_share.granted_at,
                    ),
                )

            self.append_audit(
                record["created_by"], "record_created",
                record_id=record_id, detail={"status": record["status"]}, _conn=conn,
            )
            created = self._load_record(conn, record_id)

        logger.info(
            "Created record id=%d status=%s by %s",
            record_id, record["status"], record["created_by"],
        )
        return created

    @_retry_on_busy
    def get_record(self, record_id: int) -> HealthRecord | None:
        with self._transaction() as conn:
            return self._load_record(conn, record_id)

    @_retry_on_busy
    def find_candidate_records(
        self,
        *,
        patient_uuids: list[str],
        grantee_username: str | None = None,
        facility: str | None = None,
    ) -> list[HealthRecord]:
        """
        Return records that *might* be visible to a requester, newest first.

        A record is a candidate if it belongs to one of *patient_uuids*, has
        a ledger entry for *grantee_username*, or was issued by *facility*.
        This is a pre-filter only; callers must still run every candidate
        through the access evaluator.
        """
        clauses: list[str] = []
        params: list[Any] = []

        if patient_uuids:
            clauses.append(f"patient_uuid IN ({', '.join('?' for _ in patient_uuids)})")
            params.extend(patient_uuids)
        if grantee_username:
            clauses.append(
                "id IN (SELECT record_id FROM record_shares WHERE grantee_username = ?)"
            )
            params.append(grantee_username)
        if facility:
            clauses.append("facility = ?")
            params.append(facility)

        if not clauses:
            return []

        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM records
                WHERE {' OR '.join(clauses)}
                ORDER BY date DESC, id DESC
                """,
                params,
            ).fetchall()
            return [self._record_from_row(conn, r) for r in rows]

    # -----------------------------------------------------------------------
    # Sharing ledger
    # -----------------------------------------------------------------------

    @_retry_on_busy
    def grant_share(
        self,
        record_id: int,
        grantee_username: str,
        access_level: str,
        actor: str,
    ) -> HealthRecord | None:
        """
        Replace any ledger entry for *grantee_username* with a fresh one.

        The delete and insert run under one write lock, so concurrent grants
        on the same record cannot lose each other's entries.  The new entry
        lands at the end of the ledger.

        Returns:
            The updated record, or ``None`` if the record does not exist.
        """
        with self._transaction(immediate=True) as conn:
            if conn.execute("SELECT 1 FROM records WHERE id = ?", (record_id,)).fetchone() is None:
                return None

            conn.execute(
                "DELETE FROM record_shares WHERE record_id = ? AND grantee_username = ?",
                (record_id, grantee_username),
            )
            conn.execute(
                """
                INSERT INTO record_shares
                    (record_id, grantee_username, access_level, granted_at)
                VALUES (?, ?, ?, ?)
                """,
                (record_id, grantee_username, access_level, _now()),
            )
            self.append_audit(
                actor, "share_granted", record_id=record_id,
                detail={"grantee": grantee_username, "access_level": access_level},
                _conn=conn,
            )
            updated = self._load_record(conn, record_id)

        logger.info(
            "Shared record %d with %s (level=%s)", record_id, grantee_username, access_level
        )
        return updated

    @_retry_on_busy
    def revoke_share(
        self, record_id: int, grantee_username: str, actor: str
    ) -> HealthRecord | None:
        """
        Remove the ledger entry for *grantee_username* if present.

        Returns:
            The updated record, or ``None`` if the record does not exist.
        """
        with self._transaction(immediate=True) as conn:
            if conn.execute("SELECT 1 FROM records WHERE id = ?", (record_id,)).fetchone() is None:
                return None

            cur = conn.execute(
                "DELETE FROM record_shares WHERE record_id = ? AND grantee_username = ?",
                (record_id, grantee_username),
            )
            removed = cur.rowcount > 0
            self.append_audit(
                actor, "share_revoked", record_id=record_id,
                detail={"grantee": grantee_username, "removed": removed},
                _conn=conn,
            )
            updated = self._load_record(conn, record_id)

        logger.info(
            "Revoked %s from record %d (entry existed: %s)", grantee_username, record_id, removed
        )
        return updated

    # -----------------------------------------------------------------------
    # Mutable record flags
    # -----------------------------------------------------------------------

    @_retry_on_busy
    def set_emergency_accessible(
        self, record_id: int, accessible: bool, actor: str
    ) -> HealthRecord | None:
        with self._transaction(immediate=True) as conn:
            cur = conn.execute(
                "UPDATE records SET is_emergency_accessible = ? WHERE id = ?",
                (int(accessible), record_id),
            )
            if cur.rowcount == 0:
                return None
            self.append_audit(
                actor, "emergency_access_set", record_id=record_id,
                detail={"accessible": accessible}, _conn=conn,
            )
            return self._load_record(conn, record_id)

    @_retry_on_busy
    def compare_and_set_status(
        self, record_id: int, expected: str, new_status: str, actor: str
    ) -> bool:
        """
        Move a record from *expected* to *new_status* in a single statement.

        Returns:
            ``True`` if the row was updated, ``False`` if its status was no
            longer *expected* (or the record does not exist).
        """
        with self._transaction(immediate=True) as conn:
            cur = conn.execute(
                "UPDATE records SET status = ? WHERE id = ? AND status = ?",
                (new_status, record_id, expected),
            )
            updated = cur.rowcount == 1
            if updated:
                self.append_audit(
                    actor, "status_changed", record_id=record_id,
                    detail={"from": expected, "to": new_status}, _conn=conn,
                )
        return updated

    @_retry_on_busy
    def mark_verified(self, record_id: int, verified_by: str, actor: str) -> HealthRecord | None:
        with self._transaction(immediate=True) as conn:
            cur = conn.execute(
                "UPDATE records SET verified_at = ?, verified_by = ? WHERE id = ?",
                (_now(), verified_by, record_id),
            )
            if cur.rowcount == 0:
                return None
            self.append_audit(
                actor, "record_verified", record_id=record_id,
                detail={"verified_by": verified_by}, _conn=conn,
            )
            return self._load_record(conn, record_id)

    # -----------------------------------------------------------------------
    # Audit log
    # -----------------------------------------------------------------------

    def append_audit(
        self,
        actor: str,
        action: str,
        record_id: int | None = None,
        detail: dict[str, Any] | None = None,
        *,
        _conn: sqlite3.Connection | None = None,
    ) -> None:
        """
        Append an entry to the append-only audit log.

        Can be called with an existing connection (*_conn*) to participate in
        the caller's transaction, or without one to open its own connection.

        Args:
            actor:     Username performing the action.
            action:    Short snake_case label, e.g. ``'share_granted'``.
            record_id: Associated record, or ``None`` for identity-level actions.
            detail:    Small JSON-serialisable dict.  Never record content.
        """
        sql = """
            INSERT INTO audit_log (actor, action, record_id, detail, timestamp)
            VALUES (?, ?, ?, ?, ?)
        """
        params = (actor, action, record_id, json.dumps(detail or {}, default=str), _now())

        if _conn is not None:
            _conn.execute(sql, params)
        else:
            with self._transaction() as conn:
                conn.execute(sql, params)

        logger.debug("Audit: actor=%s action=%s record=%s", actor, action, record_id)

    @_retry_on_busy
    def get_audit_entries(self, record_id: int) -> list[AuditEntry]:
        """Return the audit trail for one record, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_log WHERE record_id = ? ORDER BY id",
                (record_id,),
            ).fetchall()
        return [
            AuditEntry(
                id=r["id"],
                actor=r["actor"],
                action=r["action"],
                record_id=r["record_id"],
                detail=json.loads(r["detail"]),
                timestamp=r["timestamp"],
            )
            for r in rows
        ]
