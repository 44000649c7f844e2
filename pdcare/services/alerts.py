# alerts.py
# Clinical alert rules evaluated over a single patient record
"""
Each check is a pure predicate over an already-fetched PatientRecord and yields
zero or more Alerts. All checks run on every evaluation; a check that meets
malformed data is skipped so that it cannot suppress the other alerts.

Alert ids combine the check name with the natural id of the triggering record,
so re-evaluating the same snapshot always produces the same list.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from pdcare.core.config import ALERT_THRESHOLDS, CONCERNING_KEYWORDS
from pdcare.core.models import Alert, AlertSeverity, LabResult, PatientRecord
from pdcare.services.parsing import as_float, latest, parse_timestamp

logger = logging.getLogger(__name__)

CheckFn = Callable[[PatientRecord, datetime], List[Alert]]


def _latest_vital(record: PatientRecord):
    return latest(record.vitals, lambda v: v.measured_at)


def _check_cloudy_effluent(record: PatientRecord, now: datetime) -> List[Alert]:
    alerts = []
    for event in record.pd_events:
        if event.is_effluent_cloudy in (True, 1):
            alerts.append(Alert(
                id=f"cloudy-{event.exchange_id}",
                severity=AlertSeverity.CRITICAL,
                message="Cloudy PD fluid reported.",
                category="cloudy_effluent",
            ))
    return alerts


def _check_edema(record: PatientRecord, now: datetime) -> List[Alert]:
    vital = _latest_vital(record)
    notes = vital.fluid_status_notes if vital else None
    if isinstance(notes, str) and "edema" in notes.lower():
        return [Alert(
            id=f"edema-{vital.vital_id}",
            severity=AlertSeverity.WARNING,
            message=f"Fluid status notes: {notes}",
            category="edema",
        )]
    return []


def _check_fever(record: PatientRecord, now: datetime) -> List[Alert]:
    vital = _latest_vital(record)
    temperature = as_float(vital.temperature_c) if vital else None
    if temperature is not None and temperature > ALERT_THRESHOLDS["fever_celsius"]:
        return [Alert(
            id=f"fever-{vital.vital_id}",
            severity=AlertSeverity.CRITICAL,
            message=f"Fever detected: {temperature:g}°C.",
            category="fever",
        )]
    return []


def _collect_free_text(record: PatientRecord) -> str:
    texts = [e.complications for e in record.pd_events]
    texts += [s.summary for s in record.pro_surveys]
    texts += [v.fluid_status_notes for v in record.vitals]
    return " ".join(t for t in texts if isinstance(t, str)).lower()


def find_concerning_keywords(record: PatientRecord) -> List[str]:
    """Keywords from the fixed list that appear anywhere in the record's free text"""
    text = _collect_free_text(record)
    return [keyword for keyword in CONCERNING_KEYWORDS if keyword in text]


def _check_keywords(record: PatientRecord, now: datetime) -> List[Alert]:
    found = find_concerning_keywords(record)
    if not found:
        return []
    return [Alert(
        id="text-keywords",
        severity=AlertSeverity.WARNING,
        message=f"Concerning keywords found in notes: {', '.join(found)}.",
        category="keywords",
    )]


def _check_high_bp(record: PatientRecord, now: datetime) -> List[Alert]:
    vital = _latest_vital(record)
    systolic = as_float(vital.systolic_bp) if vital else None
    if systolic is not None and systolic > ALERT_THRESHOLDS["high_systolic_bp"]:
        diastolic = as_float(vital.diastolic_bp)
        reading = f"{systolic:g}/{diastolic:g}" if diastolic is not None else f"{systolic:g}/?"
        return [Alert(
            id=f"high-bp-{vital.vital_id}",
            severity=AlertSeverity.CRITICAL,
            message=f"High BP recorded: {reading} mmHg.",
            category="high_bp",
        )]
    return []


def _check_missed_logs(record: PatientRecord, now: datetime) -> List[Alert]:
    if not record.pd_events:
        return [Alert(
            id="no-logs",
            severity=AlertSeverity.WARNING,
            message="No PD logs ever recorded for this patient.",
            category="missed_logs",
        )]

    last_event = latest(record.pd_events, lambda e: e.exchange_at)
    if last_event is None:
        return []
    days_since = (now - parse_timestamp(last_event.exchange_at)).days
    if days_since >= ALERT_THRESHOLDS["missed_log_days"]:
        return [Alert(
            id="missed-logs",
            severity=AlertSeverity.WARNING,
            message=f"No PD logs for {days_since} days.",
            category="missed_logs",
        )]
    return []


def _baseline(values: List[Optional[float]]) -> Optional[float]:
    numbers = [v for v in values if v is not None]
    if not numbers:
        return None
    return sum(numbers) / len(numbers)


def _check_urine_drop(record: PatientRecord, now: datetime) -> List[Alert]:
    logs = [log for log in record.urine_output_logs if parse_timestamp(log.log_date) is not None]
    if len(logs) < 2:
        return []

    latest_log = latest(logs, lambda log: log.log_date)
    volume = as_float(latest_log.volume_ml)
    baseline = _baseline([as_float(log.volume_ml) for log in logs if log is not latest_log])
    if volume is None or baseline is None or baseline <= 0:
        return []

    if volume < baseline * ALERT_THRESHOLDS["urine_drop_fraction"]:
        return [Alert(
            id=f"urine-drop-{latest_log.log_id}",
            severity=AlertSeverity.WARNING,
            message=f"Urine output dropped to {volume:g}mL (baseline avg: {baseline:.0f}mL).",
            category="urine_drop",
        )]
    return []


def _check_weight_change(record: PatientRecord, now: datetime) -> List[Alert]:
    vitals = [v for v in record.vitals if parse_timestamp(v.measured_at) is not None]
    if len(vitals) < 2:
        return []

    latest_vital = latest(vitals, lambda v: v.measured_at)
    weight = as_float(latest_vital.weight_kg)
    baseline = _baseline([as_float(v.weight_kg) for v in vitals if v is not latest_vital])
    if weight is None or baseline is None or baseline <= 0:
        return []

    change = abs(weight - baseline) / baseline
    if change > ALERT_THRESHOLDS["weight_change_fraction"]:
        return [Alert(
            id=f"weight-change-{latest_vital.vital_id}",
            severity=AlertSeverity.WARNING,
            message=f"Significant weight change of {change * 100:.0f}% detected.",
            category="weight_change",
        )]
    return []


def _check_image_review(record: PatientRecord, now: datetime) -> List[Alert]:
    if any(image.requires_review for image in record.uploaded_images):
        return [Alert(
            id="image-review",
            severity=AlertSeverity.WARNING,
            message="New image uploaded for review.",
            category="image_review",
        )]
    return []


def _check_non_compliance(record: PatientRecord, now: datetime) -> List[Alert]:
    prescribed = ALERT_THRESHOLDS["prescribed_daily_exchanges"]
    yesterday = (now - timedelta(days=1)).date()
    logged = 0
    for event in record.pd_events:
        ts = parse_timestamp(event.exchange_at)
        if ts is not None and ts.date() == yesterday:
            logged += 1

    if 0 < logged < prescribed:
        return [Alert(
            id="non-compliance",
            severity=AlertSeverity.WARNING,
            message=f"Patient may be non-compliant (logged {logged}/{prescribed} exchanges yesterday).",
            category="non_compliance",
        )]
    return []


CHECKS: List[Tuple[str, CheckFn]] = [
    ("cloudy effluent", _check_cloudy_effluent),
    ("edema", _check_edema),
    ("fever", _check_fever),
    ("concerning keywords", _check_keywords),
    ("high blood pressure", _check_high_bp),
    ("missed logs", _check_missed_logs),
    ("urine output drop", _check_urine_drop),
    ("weight change", _check_weight_change),
    ("image review", _check_image_review),
    ("non-compliance", _check_non_compliance),
]


def evaluate_alerts(record: PatientRecord, now: Optional[datetime] = None) -> List[Alert]:
    """
    Run every alert check against one patient record

    Args:
        record: Snapshot of the patient and all of their clinical collections
        now: Reference time (aware values are converted to local time); defaults to now

    Returns:
        Triggered alerts in check order, unique by id (first occurrence kept)
    """
    now = parse_timestamp(now) if now is not None else datetime.now()
    alerts: List[Alert] = []
    for name, check in CHECKS:
        try:
            alerts.extend(check(record, now))
        except (TypeError, ValueError, AttributeError, ArithmeticError) as e:
            logger.warning("Skipping %s check for patient %s: %s", name, record.patient_id, e)

    unique: List[Alert] = []
    seen = set()
    for alert in alerts:
        if alert.id in seen:
            continue
        seen.add(alert.id)
        unique.append(alert)
    return unique


def has_critical_alert(alerts: List[Alert]) -> bool:
    return any(a.severity == AlertSeverity.CRITICAL for a in alerts)


def classify_lab_result(result: LabResult) -> Optional[str]:
    """'high' / 'low' against the reference range; None when in range or no bound applies"""
    value = as_float(result.value)
    if value is None:
        return None
    high = as_float(result.reference_high)
    low = as_float(result.reference_low)
    if high is not None and value > high:
        return "high"
    if low is not None and value < low:
        return "low"
    return None
