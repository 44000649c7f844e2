# kpis.py
# Clinic-wide aggregations: peritonitis rate, KPI counts, dashboard metrics

import calendar
import logging
import math
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple, Union

from pdcare.core.config import ALERT_THRESHOLDS, PD_ANALYTICS
from pdcare.core.models import (
    DROPOUT_STATUSES, KpiSummary, Patient, PatientRecord, PatientStatus, status_value
)
from pdcare.services.alerts import evaluate_alerts, has_critical_alert
from pdcare.services.parsing import as_float, latest, parse_date, parse_timestamp, sorted_by_time

logger = logging.getLogger(__name__)

PatientLike = Union[Patient, PatientRecord]

# Weights for the peritonitis risk ranking (per triggering alert category)
RISK_WEIGHTS = {
    "recent_episode": 3,
    "cloudy_effluent": 4,
    "fever": 2,
    "keywords": 1,
    "image_review": 1,
    "missed_logs": 1,
    "non_compliance": 1,
}


def _patient_of(item: PatientLike) -> Patient:
    return item.patient if isinstance(item, PatientRecord) else item


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start to end (never negative)"""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    if year > date.max.year:
        return date.max
    if year < date.min.year:
        return date.min
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def count_new_episodes(record: PatientRecord) -> int:
    """
    Count peritonitis episodes, collapsing relapses

    An episode with the same organism as the episode just before it, diagnosed
    within one month of it, is a relapse and is not counted again.
    """
    episodes = sorted_by_time(record.peritonitis_episodes, lambda ep: ep.diagnosis_date)
    count = 0
    previous = None
    for diagnosed, episode in episodes:
        organism = (episode.organism or "").strip().lower()
        is_relapse = (
            previous is not None
            and organism
            and organism == previous[1]
            and diagnosed.date() <= add_months(previous[0].date(), 1)
        )
        if not is_relapse:
            count += 1
        previous = (diagnosed, organism)
    return count


def _months_on_therapy(patient: Patient, today: date) -> Optional[int]:
    start = parse_date(patient.pd_start_date)
    if start is None:
        return None
    if status_value(patient.status) == PatientStatus.ACTIVE_PD.value:
        end = today
    else:
        end = parse_date(patient.last_updated)
        if end is None:
            logger.debug("No end date for patient %s; exposure skipped", patient.patient_id)
            return None
    return months_between(start, end)


def compute_peritonitis_rate(records: Sequence[PatientRecord], today: Optional[date] = None) -> float:
    """
    Peritonitis episodes per patient-year across the given patients

    Returns:
        episodes / patient-years; math.inf when there are episodes but no
        exposure time, 0.0 when there are neither
    """
    today = today or date.today()
    total_months = 0
    total_episodes = 0
    for record in records:
        months = _months_on_therapy(record.patient, today)
        if months is not None:
            total_months += months
        total_episodes += count_new_episodes(record)

    patient_years = total_months / 12
    if patient_years == 0:
        return math.inf if total_episodes > 0 else 0.0
    return total_episodes / patient_years


def compute_clinic_kpis(patients: Sequence[PatientLike], today: Optional[date] = None) -> KpiSummary:
    today = today or date.today()
    week_start = today - timedelta(days=today.weekday())
    week_end = week_start + timedelta(days=6)
    last_month_end = today.replace(day=1) - timedelta(days=1)
    last_month_start = last_month_end.replace(day=1)

    summary = KpiSummary()
    for item in patients:
        patient = _patient_of(item)
        status = status_value(patient.status)
        appointment = parse_date(patient.next_appointment)
        started = parse_date(patient.pd_start_date)

        if status == PatientStatus.ACTIVE_PD.value:
            summary.active_pd += 1
        if status == PatientStatus.AWAITING_CATHETER.value:
            summary.awaiting_catheter += 1
        if status in DROPOUT_STATUSES:
            summary.dropouts += 1
        if appointment is not None and week_start <= appointment <= week_end:
            summary.appointments_this_week += 1
        if appointment is not None and appointment < today:
            summary.missed_visits += 1
        if started is not None and last_month_start <= started <= last_month_end:
            summary.new_starts_last_month += 1
    return summary


def compute_dashboard_summary(records: Sequence[PatientRecord], now: Optional[datetime] = None) -> Dict[str, int]:
    """Headline counts for the physician dashboard"""
    now = parse_timestamp(now) if now is not None else datetime.now()
    critical = 0
    images = 0
    not_logged_today = 0
    for record in records:
        alerts = evaluate_alerts(record, now)
        if has_critical_alert(alerts):
            critical += 1
        images += sum(1 for img in record.uploaded_images if img.requires_review)

        last_event = latest(record.pd_events, lambda e: e.exchange_at)
        if last_event is None or (now - parse_timestamp(last_event.exchange_at)).days >= 1:
            not_logged_today += 1

    return {
        "total_patients": len(records),
        "critical_alert_patients": critical,
        "images_for_review": images,
        "not_logged_today": not_logged_today,
    }


def compute_nurse_metrics(records: Sequence[PatientRecord], today: Optional[date] = None) -> Dict[str, object]:
    """Daily overview for the PD nurse: queue sizes and home visits due in the next 30 days"""
    today = today or date.today()
    awaiting = 0
    in_training = 0
    on_treatment = 0
    appointments_today = 0
    home_visits: List[Tuple[date, Patient]] = []

    for record in records:
        patient = record.patient
        if status_value(patient.status) == PatientStatus.AWAITING_CATHETER.value:
            awaiting += 1

        started = parse_date(patient.pd_start_date)
        if started is not None and started > today - timedelta(days=90):
            in_training += 1

        for episode in record.peritonitis_episodes:
            diagnosed = parse_date(episode.diagnosis_date)
            if episode.outcome != "Resolved" and diagnosed is not None and diagnosed > today - timedelta(days=30):
                on_treatment += 1
                break

        if parse_date(patient.next_appointment) == today:
            appointments_today += 1

        last_visit = parse_date(patient.last_home_visit_date)
        # Visit due 90 days after the last one, and within the next 30 days
        if last_visit is not None and today - timedelta(days=90) < last_visit < today - timedelta(days=60):
            home_visits.append((last_visit + timedelta(days=90), patient))

    home_visits.sort(key=lambda pair: pair[0])
    return {
        "awaiting_catheter": awaiting,
        "in_training": in_training,
        "on_peritonitis_treatment": on_treatment,
        "appointments_today": appointments_today,
        "upcoming_home_visits": home_visits,
    }


def _daily_uf(record: PatientRecord, start: date, end: date) -> Dict[date, float]:
    totals: Dict[date, float] = defaultdict(float)
    for event in record.pd_events:
        day = parse_date(event.exchange_at)
        uf = as_float(event.ultrafiltration_ml)
        if day is None or uf is None:
            continue
        if start <= day <= end:
            totals[day] += uf
    return dict(totals)


def _mean(values) -> Optional[float]:
    values = list(values)
    return sum(values) / len(values) if values else None


def compute_pd_log_analytics(
    record: PatientRecord,
    prescribed_daily_exchanges: Optional[int] = None,
    today: Optional[date] = None,
) -> Dict[str, object]:
    """
    Logging adherence and ultrafiltration trends for one patient

    Returns:
        Dict with keys: missed_log_percentage, avg_uf, min_uf, max_uf,
        baseline_uf, recent_uf, uf_drop
    """
    today = today or date.today()
    if prescribed_daily_exchanges is None:
        prescribed_daily_exchanges = ALERT_THRESHOLDS["prescribed_daily_exchanges"]

    missed_pct = 0.0
    started = parse_date(record.patient.pd_start_date)
    if prescribed_daily_exchanges > 0 and started is not None:
        window_start = max(today - timedelta(days=PD_ANALYTICS["missed_log_window_days"]), started)
        days = (today - window_start).days + 1
        if days > 0:
            expected = days * prescribed_daily_exchanges
            logged = 0
            for event in record.pd_events:
                day = parse_date(event.exchange_at)
                if day is not None and window_start <= day <= today:
                    logged += 1
            missed_pct = max(0, expected - logged) / expected * 100

    window = _daily_uf(record, today - timedelta(days=PD_ANALYTICS["uf_window_days"]), today)
    baseline = _mean(_daily_uf(
        record,
        today - timedelta(days=PD_ANALYTICS["uf_baseline_start_days"]),
        today - timedelta(days=PD_ANALYTICS["uf_baseline_end_days"]),
    ).values())
    recent = _mean(_daily_uf(record, today - timedelta(days=PD_ANALYTICS["uf_recent_days"]), today).values())

    uf_drop = (
        baseline is not None
        and recent is not None
        and baseline > PD_ANALYTICS["uf_baseline_min_ml"]
        and recent < baseline * PD_ANALYTICS["uf_drop_fraction"]
    )

    return {
        "missed_log_percentage": missed_pct,
        "avg_uf": _mean(window.values()) or 0.0,
        "min_uf": min(window.values()) if window else 0.0,
        "max_uf": max(window.values()) if window else 0.0,
        "baseline_uf": baseline,
        "recent_uf": recent,
        "uf_drop": uf_drop,
    }


def peritonitis_risk_score(record: PatientRecord, now: Optional[datetime] = None) -> int:
    """Deterministic weighted sum of recent episodes and infection-related alerts"""
    now = parse_timestamp(now) if now is not None else datetime.now()
    one_year_ago = (now - timedelta(days=365)).date()
    score = 0
    for episode in record.peritonitis_episodes:
        diagnosed = parse_date(episode.diagnosis_date)
        if diagnosed is not None and diagnosed >= one_year_ago:
            score += RISK_WEIGHTS["recent_episode"]
    for alert in evaluate_alerts(record, now):
        score += RISK_WEIGHTS.get(alert.category, 0)
    return score


def rank_by_peritonitis_risk(
    records: Sequence[PatientRecord],
    limit: int = 5,
    now: Optional[datetime] = None,
) -> List[Tuple[PatientRecord, int]]:
    now = parse_timestamp(now) if now is not None else datetime.now()
    scored = [(record, peritonitis_risk_score(record, now)) for record in records]
    scored.sort(key=lambda pair: (-pair[1], pair[0].patient.name))
    return scored[:limit]
