# services/__init__.py
# Re-export the storage, rules, analytics and integration entry points

from .db_operations import (
    create_patient, get_patient, get_all_patients, search_patients, update_patient, delete_patient,
    get_physicians, get_patient_record, get_all_patient_records, save_patient_log, add_lab_results,
    replace_medications, save_doctor_notes, add_peritonitis_episode, add_uploaded_image,
    mark_image_reviewed, add_pro_survey, add_adequacy_test,
    log_event, get_recent_logs, get_audit_log
)
from .alerts import evaluate_alerts, classify_lab_result, has_critical_alert
from .kpis import (
    compute_peritonitis_rate, compute_clinic_kpis, compute_dashboard_summary,
    compute_nurse_metrics, compute_pd_log_analytics, peritonitis_risk_score, rank_by_peritonitis_risk
)
from .pet_test import calculate_pet_ratios, classify_transport
from .notifications import EventBus, AlertDispatcher, NotificationError, DATA_UPDATED
from .openai_service import MedicationAdvisor, MedicationAdvisorError
from .pdf_generator import PatientSummaryPDFGenerator

__all__ = [
    # DB Operations
    'create_patient', 'get_patient', 'get_all_patients', 'search_patients', 'update_patient',
    'delete_patient', 'get_physicians', 'get_patient_record', 'get_all_patient_records',
    'save_patient_log', 'add_lab_results', 'replace_medications', 'save_doctor_notes',
    'add_peritonitis_episode', 'add_uploaded_image', 'mark_image_reviewed', 'add_pro_survey',
    'add_adequacy_test', 'log_event', 'get_recent_logs', 'get_audit_log',
    # Rules and analytics
    'evaluate_alerts', 'classify_lab_result', 'has_critical_alert',
    'compute_peritonitis_rate', 'compute_clinic_kpis', 'compute_dashboard_summary',
    'compute_nurse_metrics', 'compute_pd_log_analytics', 'peritonitis_risk_score',
    'rank_by_peritonitis_risk', 'calculate_pet_ratios', 'classify_transport',
    # Services
    'EventBus', 'AlertDispatcher', 'NotificationError', 'DATA_UPDATED',
    'MedicationAdvisor', 'MedicationAdvisorError',
    'PatientSummaryPDFGenerator'
]
