from conftest import NOW, days_ago, make_patient, make_record

from pdcare.core.models import LabResult, Medication, PDEvent, PeritonitisEpisode, Vital
from pdcare.services.alerts import evaluate_alerts
from pdcare.services.pdf_generator import PatientSummaryPDFGenerator


def test_summary_pdf_for_full_record():
    record = make_record(
        patient=make_patient("P1", doctor_notes="- Review **fluid** balance\nCheck <exit site> weekly"),
        vitals=[Vital("V1", days_ago(1), 185, 100, 90, 38.4, 80.0, fluid_status_notes="Mild edema")],
        lab_results=[LabResult("L1", days_ago(2), "Hemoglobin", 9.1, "g/dL", 12.0, 16.0)],
        pd_events=[PDEvent("E1", days_ago(1), "Dextrose 2.5%", 2000, 1900, is_effluent_cloudy=True)],
        medications=[
            Medication("M1", "Erythropoietin", "4000 IU", "Weekly", "2023-04-01"),
            Medication("M2", "Old drug", "1mg", "Daily", "2020-01-01", end_date="2021-01-01"),
        ],
        peritonitis_episodes=[PeritonitisEpisode("EP1", "2023-11-10", "S. epidermidis & others", "Vancomycin IP")],
    )
    alerts = evaluate_alerts(record, NOW)

    pdf = PatientSummaryPDFGenerator(clinic_name="Test Clinic").generate_patient_summary_pdf(
        record, alerts, kpi_note="Clinic peritonitis rate: 0.25 episodes per patient-year"
    )

    assert alerts
    assert pdf.startswith(b"%PDF")


def test_summary_pdf_for_empty_record():
    pdf = PatientSummaryPDFGenerator().generate_patient_summary_pdf(make_record(), [])

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 1000
