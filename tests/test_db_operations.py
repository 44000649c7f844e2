from conftest import days_ago, make_patient

from pdcare.core import database
from pdcare.core.models import (
    LabResult, Medication, PatientStatus, PDAdequacy, PDEvent, PeritonitisEpisode, PROSurvey,
    UploadedImage, UrineOutputLog, Vital
)
from pdcare.services import db_operations as db
from pdcare.services.notifications import DATA_UPDATED, EventBus


def recording_bus():
    bus = EventBus()
    received = []
    bus.subscribe(DATA_UPDATED, received.append)
    return bus, received


def test_create_and_get_patient(temp_db):
    bus, received = recording_bus()
    db.create_patient(make_patient("P1", status=PatientStatus.AWAITING_CATHETER), bus=bus)

    patient = db.get_patient("P1")

    assert patient.name == "Test P1"
    assert patient.status == "Awaiting Catheter"
    assert patient.created_at is not None
    assert received == [{"patient_id": "P1", "type": DATA_UPDATED}]
    assert db.get_patient("missing") is None


def test_search_patients(temp_db):
    db.create_patient(make_patient("P1", first_name="Abdul", last_name="Talal", nephro_id="NEPH-1"))
    db.create_patient(make_patient("P2", first_name="Fred", last_name="Mendes", physician="Dr. Sachin"))
    db.create_patient(make_patient("P3", first_name="Maria", last_name="Iqbal",
                                   status=PatientStatus.DECEASED.value))

    assert [p.patient_id for p in db.search_patients("abdul t")] == ["P1"]
    assert [p.patient_id for p in db.search_patients("neph-1")] == ["P1"]
    assert [p.patient_id for p in db.search_patients(status="Deceased")] == ["P3"]
    assert [p.patient_id for p in db.search_patients(physician="Dr. Sachin")] == ["P2"]
    assert len(db.search_patients()) == 3
    assert db.get_physicians() == ["Dr. House", "Dr. Sachin"]


def test_update_patient_bumps_last_updated(temp_db):
    db.create_patient(make_patient("P1", last_updated="2020-01-01T00:00:00"))

    assert db.update_patient("P1", status=PatientStatus.TRANSPLANTED, contact_phone="123")
    assert not db.update_patient("P1", unknown_field="x")

    patient = db.get_patient("P1")
    assert patient.status == "Transplanted"
    assert patient.contact_phone == "123"
    assert patient.last_updated > "2020-01-01T00:00:00"


def test_save_patient_log_ignores_existing_ids(temp_db):
    db.create_patient(make_patient("P1"))
    bus, received = recording_bus()
    event = PDEvent("E1", days_ago(0.1), "Dextrose 1.5%", 2000, 2250, is_effluent_cloudy=True)

    first = db.save_patient_log(
        "P1", [event], Vital("V1", days_ago(0.1), temperature_c=37.0),
        UrineOutputLog("U1", days_ago(0.1), 300), bus=bus
    )
    second = db.save_patient_log("P1", [event], bus=bus)

    assert first == {"events": 1, "vitals": 1, "urine_logs": 1, "new_event_ids": ["E1"]}
    assert second == {"events": 0, "vitals": 0, "urine_logs": 0, "new_event_ids": []}
    assert len(received) == 1

    record = db.get_patient_record("P1")
    assert len(record.pd_events) == 1
    assert record.pd_events[0].ultrafiltration_ml == 250
    assert record.pd_events[0].is_effluent_cloudy is True
    assert record.vitals[0].temperature_c == 37.0
    assert record.urine_output_logs[0].volume_ml == 300


def test_negative_ultrafiltration_is_kept(temp_db):
    db.create_patient(make_patient("P1"))
    retained = PDEvent("E1", days_ago(0.1), "Dextrose 1.5%", 2000, 1850, ultrafiltration_ml=999)

    assert db.save_patient_log("P1", [retained])["new_event_ids"] == ["E1"]

    record = db.get_patient_record("P1")
    assert record.pd_events[0].ultrafiltration_ml == -150


def test_record_collections_round_trip(temp_db):
    db.create_patient(make_patient("P1"))

    assert db.add_lab_results("P1", [
        LabResult("L1", days_ago(2), "Potassium", 4.2, "mmol/L", 3.5, 5.1),
        LabResult("L2", days_ago(1), "Creatinine", 7.1, "mg/dL"),
    ]) == 2
    assert db.add_lab_results("P1", [LabResult("L1", days_ago(2), "Potassium", 4.2, "mmol/L")]) == 0
    assert db.add_peritonitis_episode("P1", PeritonitisEpisode("EP1", "2024-01-01", "E. coli"))
    assert db.add_uploaded_image("P1", UploadedImage("I1", "exit-site", days_ago(1)))
    assert db.add_pro_survey("P1", PROSurvey("S1", days_ago(3), "KDQOL-36", 70))
    assert db.add_adequacy_test("P1", PDAdequacy("T1", days_ago(10), 1.9, 1.4))

    record = db.get_patient_record("P1")

    assert [lab.lab_result_id for lab in record.lab_results] == ["L2", "L1"]
    assert record.peritonitis_episodes[0].outcome == "In Treatment"
    assert record.uploaded_images[0].requires_review is True
    assert record.pro_surveys[0].score == 70
    assert record.adequacy_tests[0].total_ktv == 1.9


def test_mark_image_reviewed(temp_db):
    db.create_patient(make_patient("P1"))
    db.add_uploaded_image("P1", UploadedImage("I1", "fluid-bag", days_ago(1)))

    assert db.mark_image_reviewed("P1", "I1")
    assert db.get_patient_record("P1").uploaded_images[0].requires_review is False
    assert not db.mark_image_reviewed("P1", "missing")


def test_replace_medications_and_notes(temp_db):
    db.create_patient(make_patient("P1"))
    db.replace_medications("P1", [
        Medication("M1", "Lisinopril", "10mg", "Once daily", "2024-01-01"),
        Medication("M2", "Calcium acetate", "667mg", "With meals", "2024-02-01"),
    ])
    db.replace_medications("P1", [Medication("M3", "Furosemide", "40mg", "Twice daily", "2024-03-01")])
    db.save_doctor_notes("P1", "Review fluid balance")

    record = db.get_patient_record("P1")

    assert [m.medication_id for m in record.medications] == ["M3"]
    assert record.patient.doctor_notes == "Review fluid balance"


def test_delete_patient_cascades(temp_db):
    db.create_patient(make_patient("P1"))
    db.save_patient_log("P1", [PDEvent("E1", days_ago(1), "Dextrose 1.5%", 2000, 2100)])

    assert db.delete_patient("P1")
    assert db.get_patient_record("P1") is None
    assert db.get_all_patient_records() == []


def test_audit_log(temp_db):
    db.log_event("System started")
    db.log_event("Viewed labs", "P1")
    db.log_event("Saved notes", "P1")

    assert [e.msg for e in db.get_recent_logs(limit=2)] == ["Saved notes", "Viewed labs"]
    assert [e.msg for e in db.get_audit_log("P1")] == ["Saved notes", "Viewed labs"]


def test_seeded_demo_data(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DB_PATH", tmp_path / "seeded.db")
    database.init_database()
    database.init_database()

    records = db.get_all_patient_records()

    assert sorted(r.patient_id for r in records) == ["PAT-001", "PAT-002", "PAT-003"]
    fred = db.get_patient_record("PAT-002")
    assert any(e.is_effluent_cloudy for e in fred.pd_events)
