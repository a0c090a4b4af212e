"""
Test fixtures for medvault.
"""

import pytest
from cryptography.fernet import Fernet

from medvault.integrity import generate_keypair
from medvault.service import MedVault
from storage.db import SQLiteStore


@pytest.fixture
def data_key():
    """A content-encryption key for this test's store."""
    return Fernet.generate_key()


@pytest.fixture
def store(tmp_path, data_key):
    """A fresh SQLite store per test."""
    return SQLiteStore(tmp_path / "medvault.db", data_key=data_key)


@pytest.fixture
def vault(store):
    return MedVault(store)


@pytest.fixture(scope="session")
def keypair():
    """One RSA keypair shared across the session; generation is slow."""
    return generate_keypair()


@pytest.fixture
def patient(vault):
    return vault.register_identity("pat", "patient", "Pat Morgan")


@pytest.fixture
def gp(vault):
    """A GP whose display name is also the facility on records they issue."""
    return vault.register_identity("drlee", "gp", "Riverside Clinic")


@pytest.fixture
def friend(vault):
    return vault.register_identity("fran", "patient", "Fran Okafor")


@pytest.fixture
def stranger(vault):
    return vault.register_identity("sam", "patient", "Sam Doe")


@pytest.fixture
def draft():
    """A valid record draft as a route layer would pass it in."""
    return {
        "title": "Annual check-up",
        "date": "2024-03-01T09:30:00",
        "record_type": "consultation",
        "facility": "Self-reported",
        "content": {
            "notes": "Blood pressure normal",
            "diagnosis": "Healthy",
            "private_notes": "Mentioned trouble sleeping",
        },
    }


@pytest.fixture
def own_record(vault, patient, draft):
    """A self-authored record owned by ``patient``."""
    return vault.create_record(patient.username, patient.uuid, draft)


@pytest.fixture
def emergency_contact(vault, patient, friend):
    """``friend`` listed as ``patient``'s emergency contact with record access."""
    return vault.update_emergency_contacts(
        patient.username,
        [{
            "grantee_username": friend.username,
            "can_view_records": True,
            "contact_meta": {"name": "Fran Okafor", "relationship": "Sister", "phone": "555-0101"},
        }],
    )
