# models.py
# Data models for the PD clinic dashboard
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class PatientStatus(str, Enum):
    AWAITING_CATHETER = "Awaiting Catheter"
    ACTIVE_PD = "Active PD"
    TRANSFERRED_TO_HD = "Transferred to HD"
    CATHETER_REMOVED = "Catheter Removed"
    TRANSPLANTED = "Transplanted"
    DECEASED = "Deceased"

    @classmethod
    def values(cls) -> List[str]:
        return [item.value for item in cls]


DROPOUT_STATUSES = {
    PatientStatus.DECEASED.value,
    PatientStatus.TRANSFERRED_TO_HD.value,
    PatientStatus.CATHETER_REMOVED.value,
    PatientStatus.TRANSPLANTED.value,
}


def status_value(status) -> str:
    """Plain string form of a status given as enum member or stored text"""
    return status.value if isinstance(status, PatientStatus) else str(status or "")


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


@dataclass
class Patient:
    patient_id: str
    first_name: str
    last_name: str
    physician: str
    nephro_id: str = ""
    status: str = PatientStatus.ACTIVE_PD.value
    gender: str = "Other"
    date_of_birth: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    underlying_kidney_disease: Optional[str] = None
    pd_exchange_type: str = "Self"  # Self, Assisted
    pd_start_date: Optional[str] = None
    next_appointment: Optional[str] = None
    last_home_visit_date: Optional[str] = None
    doctor_notes: Optional[str] = None
    created_at: Optional[str] = None
    last_updated: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Vital:
    vital_id: str
    measured_at: str
    systolic_bp: Optional[float] = None
    diastolic_bp: Optional[float] = None
    heart_rate: Optional[float] = None
    temperature_c: Optional[float] = None
    weight_kg: Optional[float] = None
    respiratory_rate: Optional[float] = None
    fluid_status_notes: Optional[str] = None


@dataclass
class LabResult:
    lab_result_id: str
    resulted_at: str
    test_name: str
    value: float
    units: str
    reference_low: Optional[float] = None
    reference_high: Optional[float] = None


@dataclass
class PDEvent:
    exchange_id: str
    exchange_at: str
    dialysate_type: str
    fill_volume_ml: float
    drain_volume_ml: float
    dwell_time_hours: float = 0.0
    ultrafiltration_ml: Optional[float] = None  # drain - fill, negative means retention
    is_effluent_cloudy: bool = False
    complications: Optional[str] = None
    recorded_by: str = "Patient"  # Patient, Nurse, Automated Machine

    def __post_init__(self):
        if self.ultrafiltration_ml is None:
            try:
                self.ultrafiltration_ml = float(self.drain_volume_ml) - float(self.fill_volume_ml)
            except (TypeError, ValueError, OverflowError):
                self.ultrafiltration_ml = None


@dataclass
class Medication:
    medication_id: str
    name: str
    dosage: str
    frequency: str
    start_date: str
    end_date: Optional[str] = None
    prescribing_doctor: Optional[str] = None
    reason: Optional[str] = None
    status: str = "ok"  # ok, warning


@dataclass
class PeritonitisEpisode:
    episode_id: str
    diagnosis_date: str
    organism: str
    treatment_regimen: str = ""
    outcome: str = "In Treatment"  # Resolved, Catheter Removal, Transferred to HD, Deceased, In Treatment
    resolution_date: Optional[str] = None


@dataclass
class UrineOutputLog:
    log_id: str
    log_date: str
    volume_ml: float


@dataclass
class UploadedImage:
    image_id: str
    image_type: str  # exit-site, fluid-bag
    uploaded_at: str
    image_url: str = ""
    requires_review: bool = True


@dataclass
class PROSurvey:
    survey_id: str
    survey_date: str
    survey_tool: str
    score: float
    summary: Optional[str] = None


@dataclass
class PDAdequacy:
    test_id: str
    test_date: str
    total_ktv: Optional[float] = None
    peritoneal_ktv: Optional[float] = None


@dataclass
class PatientRecord:
    """A patient together with every clinical collection recorded for them."""
    patient: Patient
    vitals: List[Vital] = field(default_factory=list)
    lab_results: List[LabResult] = field(default_factory=list)
    pd_events: List[PDEvent] = field(default_factory=list)
    medications: List[Medication] = field(default_factory=list)
    peritonitis_episodes: List[PeritonitisEpisode] = field(default_factory=list)
    urine_output_logs: List[UrineOutputLog] = field(default_factory=list)
    uploaded_images: List[UploadedImage] = field(default_factory=list)
    pro_surveys: List[PROSurvey] = field(default_factory=list)
    adequacy_tests: List[PDAdequacy] = field(default_factory=list)

    @property
    def patient_id(self) -> str:
        return self.patient.patient_id


@dataclass
class Alert:
    id: str
    severity: AlertSeverity
    message: str
    category: str


@dataclass
class KpiSummary:
    active_pd: int = 0
    appointments_this_week: int = 0
    new_starts_last_month: int = 0
    dropouts: int = 0
    awaiting_catheter: int = 0
    missed_visits: int = 0


@dataclass
class PetResult:
    dp_creatinine_2h: Optional[float]
    dp_creatinine_4h: Optional[float]
    dd0_glucose_2h: Optional[float]
    dd0_glucose_4h: Optional[float]
    transport_type: str = "N/A"


@dataclass
class MedicationSuggestion:
    medication_name: str
    suggested_change: str
    reasoning: str


@dataclass
class AuditEvent:
    ts: str
    msg: str
    id: Optional[int] = None
    patient_id: Optional[str] = None
