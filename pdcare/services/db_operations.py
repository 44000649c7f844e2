# db_operations.py
# CRUD operations for all database entities
import logging
from contextlib import closing
from dataclasses import asdict, fields
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from pdcare.core.database import DatabaseConnection
from pdcare.core.models import (
    AuditEvent, LabResult, Medication, Patient, PatientRecord, PDAdequacy, PDEvent, PeritonitisEpisode,
    PROSurvey, UploadedImage, UrineOutputLog, Vital, status_value
)
from pdcare.services.notifications import EventBus, publish_data_update
from pdcare.services.parsing import as_float

logger = logging.getLogger(__name__)

# table name, dataclass, ORDER BY column for each per-patient collection
COLLECTIONS = {
    "vitals": ("vitals", Vital, "measured_at"),
    "lab_results": ("lab_results", LabResult, "resulted_at"),
    "pd_events": ("pd_events", PDEvent, "exchange_at"),
    "medications": ("medications", Medication, "start_date"),
    "peritonitis_episodes": ("peritonitis_episodes", PeritonitisEpisode, "diagnosis_date"),
    "urine_output_logs": ("urine_output_logs", UrineOutputLog, "log_date"),
    "uploaded_images": ("uploaded_images", UploadedImage, "uploaded_at"),
    "pro_surveys": ("pro_surveys", PROSurvey, "survey_date"),
    "adequacy_tests": ("adequacy_tests", PDAdequacy, "test_date"),
}

BOOLEAN_COLUMNS = {"is_effluent_cloudy", "requires_review"}

PATIENT_FIELDS = [f.name for f in fields(Patient)]
UPDATABLE_PATIENT_FIELDS = [f for f in PATIENT_FIELDS if f not in ("patient_id", "created_at", "last_updated")]


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _from_row(cls, row):
    """Build a dataclass from a row, ignoring columns the dataclass doesn't declare"""
    names = {f.name for f in fields(cls)}
    data = {k: v for k, v in dict(row).items() if k in names}
    for key in BOOLEAN_COLUMNS & data.keys():
        data[key] = bool(data[key])
    return cls(**data)


def _insert_ignore(cursor, table: str, patient_id: str, item) -> int:
    """INSERT OR IGNORE one dataclass row; returns 1 if a new row was written"""
    data = asdict(item)
    data["patient_id"] = patient_id
    columns = ", ".join(data.keys())
    placeholders = ", ".join("?" for _ in data)
    cursor.execute(
        f"INSERT OR IGNORE INTO {table} ({columns}) VALUES ({placeholders})",
        list(data.values()),
    )
    return cursor.rowcount


# ========================================
# Patient Operations
# ========================================

def create_patient(patient: Patient, bus: Optional[EventBus] = None) -> str:
    """Create a new patient in the database"""
    now = _now()
    patient.status = status_value(patient.status)
    patient.created_at = patient.created_at or now
    patient.last_updated = patient.last_updated or now

    data = asdict(patient)
    with closing(DatabaseConnection.get_connection()) as conn:
        conn.execute(
            f"INSERT INTO patients ({', '.join(data.keys())}) VALUES ({', '.join('?' for _ in data)})",
            list(data.values()),
        )
        conn.commit()

    logger.info("Created patient %s", patient.patient_id)
    publish_data_update(bus, patient.patient_id)
    return patient.patient_id


def get_patient(patient_id: str) -> Optional[Patient]:
    """Retrieve a single patient by ID"""
    with closing(DatabaseConnection.get_connection()) as conn:
        row = conn.execute("SELECT * FROM patients WHERE patient_id = ?", (patient_id,)).fetchone()

    if row:
        return _from_row(Patient, row)
    return None


def get_all_patients() -> List[Patient]:
    """Retrieve all patients ordered by name"""
    with closing(DatabaseConnection.get_connection()) as conn:
        rows = conn.execute("SELECT * FROM patients ORDER BY last_name, first_name").fetchall()

    return [_from_row(Patient, row) for row in rows]


def update_patient(patient_id: str, bus: Optional[EventBus] = None, **kwargs) -> bool:
    """Update patient fields; unknown keys are ignored"""
    set_clauses = []
    values = []

    for key, value in kwargs.items():
        if key in UPDATABLE_PATIENT_FIELDS:
            if key == "status":
                value = status_value(value)
            set_clauses.append(f"{key} = ?")
            values.append(value)

    if not set_clauses:
        return False

    set_clauses.append("last_updated = ?")
    values.append(_now())
    values.append(patient_id)

    query = f"UPDATE patients SET {', '.join(set_clauses)} WHERE patient_id = ?"
    with closing(DatabaseConnection.get_connection()) as conn:
        cursor = conn.execute(query, values)
        conn.commit()
        updated = cursor.rowcount > 0

    if updated:
        publish_data_update(bus, patient_id)
    return updated


def delete_patient(patient_id: str, bus: Optional[EventBus] = None) -> bool:
    """Delete a patient (cascades to related data)"""
    with closing(DatabaseConnection.get_connection()) as conn:
        cursor = conn.execute("DELETE FROM patients WHERE patient_id = ?", (patient_id,))
        conn.commit()
        deleted = cursor.rowcount > 0

    if deleted:
        logger.info("Deleted patient %s", patient_id)
        publish_data_update(bus, patient_id)
    return deleted


def search_patients(query: str = "", status: str = "All", physician: str = "All") -> List[Patient]:
    """Search by name, patient ID or nephrology ID and filter by status / physician"""
    sql = "SELECT * FROM patients WHERE 1=1"
    params = []

    if query:
        sql += """ AND (LOWER(first_name || ' ' || last_name) LIKE ?
                    OR LOWER(patient_id) LIKE ? OR LOWER(nephro_id) LIKE ?)"""
        needle = f"%{query.strip().lower()}%"
        params.extend([needle, needle, needle])

    if status and status != "All":
        sql += " AND status = ?"
        params.append(status_value(status))

    if physician and physician != "All":
        sql += " AND physician = ?"
        params.append(physician)

    sql += " ORDER BY last_name, first_name"

    with closing(DatabaseConnection.get_connection()) as conn:
        rows = conn.execute(sql, params).fetchall()

    return [_from_row(Patient, row) for row in rows]


def get_physicians() -> List[str]:
    with closing(DatabaseConnection.get_connection()) as conn:
        rows = conn.execute("SELECT DISTINCT physician FROM patients ORDER BY physician").fetchall()
    return [row[0] for row in rows]


# ========================================
# Patient Record Operations
# ========================================

def _load_record(conn, patient: Patient) -> PatientRecord:
    record = PatientRecord(patient=patient)
    for attr, (table, cls, order_by) in COLLECTIONS.items():
        rows = conn.execute(
            f"SELECT * FROM {table} WHERE patient_id = ? ORDER BY {order_by} DESC",
            (patient.patient_id,),
        ).fetchall()
        setattr(record, attr, [_from_row(cls, row) for row in rows])
    return record


def get_patient_record(patient_id: str) -> Optional[PatientRecord]:
    """Load a patient together with every clinical collection, newest first"""
    with closing(DatabaseConnection.get_connection()) as conn:
        row = conn.execute("SELECT * FROM patients WHERE patient_id = ?", (patient_id,)).fetchone()
        if row is None:
            return None
        return _load_record(conn, _from_row(Patient, row))


def get_all_patient_records() -> List[PatientRecord]:
    with closing(DatabaseConnection.get_connection()) as conn:
        rows = conn.execute("SELECT * FROM patients ORDER BY last_name, first_name").fetchall()
        return [_load_record(conn, _from_row(Patient, row)) for row in rows]


def _add_items(patient_id: str, table: str, items: Iterable, bus: Optional[EventBus]) -> int:
    with closing(DatabaseConnection.get_connection()) as conn:
        cursor = conn.cursor()
        added = sum(_insert_ignore(cursor, table, patient_id, item) for item in items)
        conn.commit()

    if added:
        publish_data_update(bus, patient_id)
    return added


def save_patient_log(
    patient_id: str,
    events: Optional[List[PDEvent]] = None,
    vital: Optional[Vital] = None,
    urine_log: Optional[UrineOutputLog] = None,
    bus: Optional[EventBus] = None,
) -> Dict[str, object]:
    """
    Store a patient's daily log: PD exchanges, one vitals entry and one urine output entry

    Entries whose id already exists are ignored, so re-submitting the same log is harmless.

    Returns:
        Dict with counts of rows written per collection and the ids of new exchanges
    """
    new_event_ids = []
    saved = {"events": 0, "vitals": 0, "urine_logs": 0}

    with closing(DatabaseConnection.get_connection()) as conn:
        cursor = conn.cursor()
        for event in events or []:
            fill = as_float(event.fill_volume_ml)
            drain = as_float(event.drain_volume_ml)
            if fill is not None and drain is not None:
                event.ultrafiltration_ml = drain - fill
            if _insert_ignore(cursor, "pd_events", patient_id, event):
                new_event_ids.append(event.exchange_id)
        saved["events"] = len(new_event_ids)

        if vital is not None:
            saved["vitals"] = _insert_ignore(cursor, "vitals", patient_id, vital)
        if urine_log is not None:
            saved["urine_logs"] = _insert_ignore(cursor, "urine_output_logs", patient_id, urine_log)
        conn.commit()

    saved["new_event_ids"] = new_event_ids
    if saved["events"] or saved["vitals"] or saved["urine_logs"]:
        logger.info("Saved daily log for %s: %s", patient_id, saved)
        publish_data_update(bus, patient_id)
    return saved


def add_lab_results(patient_id: str, results: List[LabResult], bus: Optional[EventBus] = None) -> int:
    """Append lab results; results with an existing id are skipped"""
    return _add_items(patient_id, "lab_results", results, bus)


def replace_medications(patient_id: str, medications: List[Medication], bus: Optional[EventBus] = None) -> int:
    """Replace the patient's medication list with the given one"""
    with closing(DatabaseConnection.get_connection()) as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM medications WHERE patient_id = ?", (patient_id,))
        count = sum(_insert_ignore(cursor, "medications", patient_id, med) for med in medications)
        conn.commit()

    publish_data_update(bus, patient_id)
    return count


def save_doctor_notes(patient_id: str, notes: str, bus: Optional[EventBus] = None) -> bool:
    return update_patient(patient_id, bus=bus, doctor_notes=notes)


def add_peritonitis_episode(patient_id: str, episode: PeritonitisEpisode, bus: Optional[EventBus] = None) -> bool:
    return _add_items(patient_id, "peritonitis_episodes", [episode], bus) > 0


def add_uploaded_image(patient_id: str, image: UploadedImage, bus: Optional[EventBus] = None) -> bool:
    return _add_items(patient_id, "uploaded_images", [image], bus) > 0


def mark_image_reviewed(patient_id: str, image_id: str, bus: Optional[EventBus] = None) -> bool:
    """Clear the review flag on an uploaded image"""
    with closing(DatabaseConnection.get_connection()) as conn:
        cursor = conn.execute("""
            UPDATE uploaded_images SET requires_review = 0
            WHERE patient_id = ? AND image_id = ?
        """, (patient_id, image_id))
        conn.commit()
        updated = cursor.rowcount > 0

    if updated:
        publish_data_update(bus, patient_id)
    return updated


def add_pro_survey(patient_id: str, survey: PROSurvey, bus: Optional[EventBus] = None) -> bool:
    return _add_items(patient_id, "pro_surveys", [survey], bus) > 0


def add_adequacy_test(patient_id: str, test: PDAdequacy, bus: Optional[EventBus] = None) -> bool:
    return _add_items(patient_id, "adequacy_tests", [test], bus) > 0


# ========================================
# Audit Log Operations
# ========================================

def log_event(message: str, patient_id: Optional[str] = None) -> int:
    """Log an audit event"""
    with closing(DatabaseConnection.get_connection()) as conn:
        cursor = conn.execute("""
            INSERT INTO audit_log (patient_id, message)
            VALUES (?, ?)
        """, (patient_id, message))
        conn.commit()
        return cursor.lastrowid


def get_recent_logs(limit: int = 50) -> List[AuditEvent]:
    """Get recent audit log entries"""
    return get_audit_log(limit=limit)


def get_audit_log(patient_id: Optional[str] = None, limit: int = 50) -> List[AuditEvent]:
    """Get audit log entries, optionally filtered by patient"""
    sql = """
        SELECT id, patient_id, strftime('%H:%M:%S', timestamp) as ts, message
        FROM audit_log
    """
    params = []
    if patient_id:
        sql += " WHERE patient_id = ?"
        params.append(patient_id)
    sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
    params.append(limit)

    with closing(DatabaseConnection.get_connection()) as conn:
        rows = conn.execute(sql, params).fetchall()

    return [AuditEvent(ts=row[2], msg=row[3], id=row[0], patient_id=row[1]) for row in rows]
