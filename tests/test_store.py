"""
Tests for the SQLite store and content encryption.
"""

import sqlite3

import pytest
from cryptography.fernet import Fernet, InvalidToken

from storage import db as db_module
from storage.crypto import decrypt_json, encrypt_json, load_fernet
from storage.db import SQLiteStore


class TestContentEncryption:
    """Record content is only ever stored as a Fernet token."""

    def test_round_trip(self, data_key):
        fernet = load_fernet(data_key)
        payload = {"notes": "Café visit", "nested": {"a": 1}}
        assert decrypt_json(fernet, encrypt_json(fernet, payload)) == payload

    def test_content_not_stored_in_clear(self, store, own_record):
        conn = sqlite3.connect(str(store.path))
        blob = conn.execute(
            "SELECT content_blob FROM records WHERE id = ?", (own_record.id,)
        ).fetchone()[0]
        conn.close()
        assert "Blood pressure" not in blob
        assert "trouble sleeping" not in blob

    def test_wrong_key_fails_loudly(self, store, own_record):
        other = SQLiteStore(store.path, data_key=Fernet.generate_key())
        with pytest.raises(InvalidToken):
            other.get_record(own_record.id)

    def test_stores_keep_their_own_keys(self, tmp_path, data_key):
        first = SQLiteStore(tmp_path / "a.db", data_key=data_key)
        second = SQLiteStore(tmp_path / "b.db", data_key=Fernet.generate_key())
        token = encrypt_json(first._fernet, {"notes": "x"})
        with pytest.raises(InvalidToken):
            decrypt_json(second._fernet, token)
        assert decrypt_json(first._fernet, token) == {"notes": "x"}

    def test_key_from_environment(self, monkeypatch):
        key = Fernet.generate_key()
        monkeypatch.setenv("MEDVAULT_DATA_KEY", key.decode())
        token = encrypt_json(load_fernet(), {"notes": "x"})
        assert decrypt_json(Fernet(key), token) == {"notes": "x"}

    def test_explicit_key_beats_environment(self, monkeypatch, data_key):
        monkeypatch.setenv("MEDVAULT_DATA_KEY", Fernet.generate_key().decode())
        token = encrypt_json(load_fernet(data_key), {"notes": "x"})
        assert decrypt_json(Fernet(data_key), token) == {"notes": "x"}

    def test_malformed_key_rejected(self):
        with pytest.raises(ValueError):
            load_fernet("not-a-fernet-key")


class TestRecords:
    def test_reopening_store_keeps_data(self, store, own_record, data_key):
        reopened = SQLiteStore(store.path, data_key=data_key)
        assert reopened.get_record(own_record.id).title == own_record.title

    def test_missing_record_is_none(self, store):
        assert store.get_record(42) is None

    def test_cas_refuses_wrong_expected_state(self, store, own_record):
        assert store.compare_and_set_status(own_record.id, "pending", "rejected", "pat") is False
        assert store.get_record(own_record.id).status == "accepted"

    def test_ledger_unique_per_grantee(self, store, own_record, friend):
        store.grant_share(own_record.id, friend.username, "view", "pat")
        record = store.grant_share(own_record.id, friend.username, "view", "pat")
        names = [s.grantee_username for s in record.shared_with]
        assert names.count(friend.username) == 1

    def test_grant_on_missing_record_is_none(self, store, friend):
        assert store.grant_share(999, friend.username, "view", "pat") is None

    def test_no_candidate_criteria_returns_nothing(self, store, own_record):
        assert store.find_candidate_records(patient_uuids=[]) == []

    def test_record_needs_existing_patient(self, store, own_record):
        fields = {
            "patient_uuid": "does-not-exist",
            "title": "Orphan",
            "date": own_record.date,
            "record_type": "note",
            "facility": "Nowhere",
            "content": {"notes": "x"},
            "status": "accepted",
            "created_by": "pat",
        }
        with pytest.raises(sqlite3.IntegrityError):
            store.create_record(fields)

    def test_public_key_written_once(self, store, patient):
        assert store.set_public_key(patient.id, "KEY-1", patient.username) is True
        assert store.set_public_key(patient.id, "KEY-2", patient.username) is False
        assert store.get_identity("id", patient.id).public_key == "KEY-1"

    def test_unknown_lookup_column_rejected(self, store):
        with pytest.raises(ValueError):
            store.get_identity("display_name", "Pat")


class TestRetry:
    """Only lock contention is retried, and only a bounded number of times."""

    class Flaky:
        def __init__(self, failures, message="database is locked", retries=3):
            self.failures = failures
            self.message = message
            self.retries = retries
            self.calls = 0

        @db_module._retry_on_busy
        def run(self):
            self.calls += 1
            if self.calls <= self.failures:
                raise sqlite3.OperationalError(self.message)
            return "ok"

    @pytest.fixture(autouse=True)
    def no_sleep(self, monkeypatch):
        monkeypatch.setattr(db_module.time, "sleep", lambda _: None)

    def test_recovers_from_transient_lock(self):
        flaky = self.Flaky(failures=2)
        assert flaky.run() == "ok"
        assert flaky.calls == 3

    def test_gives_up_after_retries(self):
        flaky = self.Flaky(failures=5)
        with pytest.raises(sqlite3.OperationalError):
            flaky.run()
        assert flaky.calls == 3

    def test_other_errors_not_retried(self):
        flaky = self.Flaky(failures=1, message="no such table: records")
        with pytest.raises(sqlite3.OperationalError):
            flaky.run()
        assert flaky.calls == 1

    def test_retries_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEDVAULT_DB_RETRIES", "7")
        assert SQLiteStore(tmp_path / "env.db").retries == 7
