# core/__init__.py
# Re-export the configuration, models and storage entry points

from .models import (
    Patient, PatientStatus, AlertSeverity, Vital, LabResult, PDEvent, Medication,
    PeritonitisEpisode, UrineOutputLog, UploadedImage, PROSurvey, PDAdequacy,
    PatientRecord, Alert, KpiSummary, PetResult, MedicationSuggestion, AuditEvent
)
from .config import OPENAI_API_KEY, CLINIC_NAME, PDF_HEADER_COLOR, validate_config, configure_logging
from .database import init_database, DatabaseConnection

__all__ = [
    # Models
    'Patient', 'PatientStatus', 'AlertSeverity', 'Vital', 'LabResult', 'PDEvent',
    'Medication', 'PeritonitisEpisode', 'UrineOutputLog', 'UploadedImage', 'PROSurvey',
    'PDAdequacy', 'PatientRecord', 'Alert', 'KpiSummary', 'PetResult',
    'MedicationSuggestion', 'AuditEvent',
    # Config
    'OPENAI_API_KEY', 'CLINIC_NAME', 'PDF_HEADER_COLOR', 'validate_config', 'configure_logging',
    # Database
    'init_database', 'DatabaseConnection'
]
