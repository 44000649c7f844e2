from datetime import datetime, timedelta

import pytest

from pdcare.core import database
from pdcare.core.models import Patient, PatientRecord

NOW = datetime(2024, 6, 15, 12, 0, 0)


def iso(moment: datetime) -> str:
    return moment.isoformat()


def days_ago(days: float, now: datetime = NOW) -> str:
    return iso(now - timedelta(days=days))


def make_patient(patient_id: str = "P1", **overrides) -> Patient:
    data = {
        "patient_id": patient_id,
        "first_name": "Test",
        "last_name": patient_id,
        "physician": "Dr. House",
        "contact_phone": "+1 555 0000",
    }
    data.update(overrides)
    return Patient(**data)


def make_record(patient_id: str = "P1", patient: Patient = None, **collections) -> PatientRecord:
    return PatientRecord(patient=patient or make_patient(patient_id), **collections)


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the storage layer at an empty sqlite file with the schema created"""
    db_file = tmp_path / "pd_test.db"
    monkeypatch.setattr(database, "DB_PATH", db_file)
    database.init_database(seed=False)
    return db_file
