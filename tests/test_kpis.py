import math
from datetime import date, datetime, timedelta

from conftest import make_patient, make_record

from pdcare.core.models import (
    KpiSummary, PatientStatus, PDEvent, PeritonitisEpisode, UploadedImage, Vital
)
from pdcare.services.kpis import (
    add_months, compute_clinic_kpis, compute_dashboard_summary, compute_nurse_metrics,
    compute_pd_log_analytics, compute_peritonitis_rate, count_new_episodes, months_between,
    peritonitis_risk_score, rank_by_peritonitis_risk
)

TODAY = date(2024, 6, 15)  # a Saturday
NOW = datetime(2024, 6, 15, 12, 0, 0)


def episode(episode_id, diagnosed, organism="Staphylococcus aureus", outcome="Resolved"):
    return PeritonitisEpisode(episode_id, diagnosed, organism, outcome=outcome)


def test_months_between_counts_whole_months():
    assert months_between(date(2022, 6, 15), date(2024, 6, 15)) == 24
    assert months_between(date(2024, 1, 31), date(2024, 2, 29)) == 0
    assert months_between(date(2024, 5, 1), date(2024, 3, 1)) == 0


def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 12, 10), 1) == date(2024, 1, 10)


def test_same_organism_relapse_is_collapsed():
    patient = make_patient(pd_start_date="2022-06-15", status=PatientStatus.ACTIVE_PD.value)
    record = make_record(patient=patient, peritonitis_episodes=[
        episode("EP1", "2023-01-01"),
        episode("EP2", "2023-01-21"),
    ])

    assert count_new_episodes(record) == 1
    assert compute_peritonitis_rate([record], TODAY) == 0.5


def test_different_organisms_count_separately():
    record = make_record(peritonitis_episodes=[
        episode("EP1", "2023-01-01", organism="E. coli"),
        episode("EP2", "2023-01-10", organism="Staphylococcus aureus"),
        episode("EP3", "2023-06-01", organism="E. coli"),
    ])

    assert count_new_episodes(record) == 3


def test_rate_with_no_exposure():
    no_start = make_patient(pd_start_date=None)

    assert compute_peritonitis_rate([], TODAY) == 0.0
    assert compute_peritonitis_rate([make_record(patient=no_start)], TODAY) == 0.0
    infected = make_record(patient=no_start, peritonitis_episodes=[episode("EP1", "2024-01-01")])
    assert math.isinf(compute_peritonitis_rate([infected], TODAY))


def test_inactive_patient_exposure_ends_at_last_update():
    patient = make_patient(
        status=PatientStatus.TRANSFERRED_TO_HD.value,
        pd_start_date="2022-01-10",
        last_updated="2023-01-10T09:00:00",
    )
    record = make_record(patient=patient, peritonitis_episodes=[episode("EP1", "2022-08-01")])

    assert compute_peritonitis_rate([record], TODAY) == 1.0


def test_clinic_kpis_empty_list():
    assert compute_clinic_kpis([], TODAY) == KpiSummary()


def test_clinic_kpis_counts():
    patients = [
        make_patient("P1", next_appointment="2024-06-12T10:00:00", pd_start_date="2024-05-03"),
        make_patient("P2", status=PatientStatus.AWAITING_CATHETER.value, next_appointment="2024-06-16"),
        make_patient("P3", status=PatientStatus.DECEASED.value, next_appointment="2024-06-17"),
        make_patient("P4", status=PatientStatus.TRANSPLANTED, pd_start_date="2024-06-01"),
        make_patient("P5", status=PatientStatus.CATHETER_REMOVED.value, next_appointment="2024-06-20"),
    ]

    kpis = compute_clinic_kpis(patients, TODAY)

    assert kpis.active_pd == 1
    assert kpis.awaiting_catheter == 1
    assert kpis.dropouts == 3
    assert kpis.appointments_this_week == 2  # Mon 10th .. Sun 16th
    assert kpis.missed_visits == 1
    assert kpis.new_starts_last_month == 1


def test_clinic_kpis_accept_records():
    kpis = compute_clinic_kpis([make_record("P1"), make_record("P2")], TODAY)

    assert kpis.active_pd == 2


def test_dashboard_summary():
    logged = make_record("P1", pd_events=[
        PDEvent("E1", (NOW - timedelta(hours=2)).isoformat(), "Dextrose 1.5%", 2000, 2100, is_effluent_cloudy=True),
    ], uploaded_images=[
        UploadedImage("I1", "exit-site", NOW.isoformat()),
        UploadedImage("I2", "fluid-bag", NOW.isoformat(), requires_review=False),
    ])
    silent = make_record("P2")

    summary = compute_dashboard_summary([logged, silent], NOW)

    assert summary == {
        "total_patients": 2,
        "critical_alert_patients": 1,
        "images_for_review": 1,
        "not_logged_today": 1,
    }


def test_nurse_metrics():
    records = [
        make_record(patient=make_patient(
            "P1", status=PatientStatus.AWAITING_CATHETER.value, next_appointment="2024-06-15T09:30:00"
        )),
        make_record(patient=make_patient(
            "P2", pd_start_date="2024-05-01", last_home_visit_date="2024-03-30"
        ), peritonitis_episodes=[episode("EP1", "2024-06-05", outcome="In Treatment")]),
        make_record(patient=make_patient(
            "P3", pd_start_date="2020-01-01", last_home_visit_date="2023-01-01"
        ), peritonitis_episodes=[episode("EP2", "2024-06-01", outcome="Resolved")]),
    ]

    metrics = compute_nurse_metrics(records, TODAY)

    assert metrics["awaiting_catheter"] == 1
    assert metrics["in_training"] == 1
    assert metrics["on_peritonitis_treatment"] == 1
    assert metrics["appointments_today"] == 1
    assert [(due, p.patient_id) for due, p in metrics["upcoming_home_visits"]] == [(date(2024, 6, 28), "P2")]


def exchanges_per_day(start: date, days: int, per_day: int, uf: float):
    events = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        for i in range(per_day):
            events.append(PDEvent(
                f"E-{day.isoformat()}-{i}",
                datetime(day.year, day.month, day.day, 6 + 4 * i).isoformat(),
                "Dextrose 1.5%",
                2000,
                2000 + uf,
            ))
    return events


def test_pd_log_analytics_missed_logs_bounded_by_start():
    patient = make_patient(pd_start_date="2024-06-06")
    events = exchanges_per_day(date(2024, 6, 6), 10, 2, 100)
    record = make_record(patient=patient, pd_events=events)

    analytics = compute_pd_log_analytics(record, prescribed_daily_exchanges=4, today=TODAY)

    assert analytics["missed_log_percentage"] == 50.0
    assert analytics["avg_uf"] == 200.0
    assert analytics["min_uf"] == 200.0
    assert analytics["max_uf"] == 200.0


def test_pd_log_analytics_flags_uf_drop():
    patient = make_patient(pd_start_date="2023-01-01")
    baseline = exchanges_per_day(TODAY - timedelta(days=85), 20, 1, 400)
    recent = exchanges_per_day(TODAY - timedelta(days=20), 20, 1, 100)
    record = make_record(patient=patient, pd_events=baseline + recent)

    analytics = compute_pd_log_analytics(record, today=TODAY)

    assert analytics["baseline_uf"] == 400.0
    assert analytics["recent_uf"] == 100.0
    assert analytics["uf_drop"] is True


def test_pd_log_analytics_without_events():
    analytics = compute_pd_log_analytics(make_record(), today=TODAY)

    assert analytics["missed_log_percentage"] == 0.0
    assert analytics["avg_uf"] == 0.0
    assert analytics["uf_drop"] is False


def test_risk_score_is_deterministic_and_ranked():
    risky = make_record("P1", peritonitis_episodes=[episode("EP1", "2024-03-01")], pd_events=[
        PDEvent("E1", (NOW - timedelta(hours=3)).isoformat(), "Dextrose 1.5%", 2000, 2100, is_effluent_cloudy=True),
    ], vitals=[Vital("V1", (NOW - timedelta(hours=3)).isoformat(), temperature_c=38.6)])
    quiet = make_record("P2", pd_events=[
        PDEvent("E2", (NOW - timedelta(hours=3)).isoformat(), "Dextrose 1.5%", 2000, 2100),
    ])

    assert peritonitis_risk_score(risky, NOW) == 3 + 4 + 2
    assert peritonitis_risk_score(risky, NOW) == peritonitis_risk_score(risky, NOW)
    assert peritonitis_risk_score(quiet, NOW) == 0

    ranked = rank_by_peritonitis_risk([quiet, risky], limit=1, now=NOW)
    assert [(r.patient_id, score) for r, score in ranked] == [("P1", 9)]


def test_out_of_range_dates_do_not_break_aggregates():
    patients = [
        make_patient("P1", next_appointment="0001-01-01T00:00:00+05:00", pd_start_date="9999-12-31T23:00:00-05:00"),
        make_patient("P2", next_appointment="2024-06-12"),
    ]
    far_future = make_record(
        patient=make_patient("P3", last_home_visit_date="9999-12-31"),
        peritonitis_episodes=[episode("EP1", "9999-12-01"), episode("EP2", "9999-12-20")],
    )

    kpis = compute_clinic_kpis(patients, TODAY)

    assert kpis.active_pd == 2
    assert kpis.appointments_this_week == 1
    assert kpis.missed_visits == 1
    assert kpis.new_starts_last_month == 0
    assert add_months(date(9999, 12, 20), 1) == date.max
    assert count_new_episodes(far_future) == 1
    assert compute_nurse_metrics([far_future], TODAY)["upcoming_home_visits"] == []
