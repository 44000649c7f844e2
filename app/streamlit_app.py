# streamlit_app.py
# Streamlit layout for the PD clinic dashboard:
# - Left sidebar: search + filters + patient list with alert counts + register patient
# - Main: clinic summary + patient header card + view selector
# - Views: Overview / Daily Log / Labs & Medications / AI Suggestions / Peritonitis /
#          PET Test / Clinic KPIs / Audit Log / Export
#
# Run: streamlit run app/streamlit_app.py

# Add parent directory to Python path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import logging
import math
import uuid
from datetime import date, datetime
from typing import List

import streamlit as st

from pdcare.core.config import OPENAI_API_KEY, OPENAI_MODEL, ALERT_THRESHOLDS, configure_logging, validate_config
from pdcare.core.database import init_database
from pdcare.core.models import (
    Alert, AlertSeverity, AuditEvent, LabResult, Medication, Patient, PatientRecord, PatientStatus,
    PDAdequacy, PDEvent, PeritonitisEpisode, PROSurvey, UploadedImage, UrineOutputLog, Vital
)
from pdcare.services.alerts import classify_lab_result, evaluate_alerts
from pdcare.services.db_operations import (
    add_adequacy_test, add_lab_results, add_peritonitis_episode, add_pro_survey, add_uploaded_image,
    create_patient, get_all_patient_records, get_physicians, get_recent_logs, log_event,
    mark_image_reviewed, replace_medications, save_doctor_notes, save_patient_log, search_patients
)
from pdcare.services.kpis import (
    compute_clinic_kpis, compute_dashboard_summary, compute_nurse_metrics, compute_pd_log_analytics,
    compute_peritonitis_rate, count_new_episodes, rank_by_peritonitis_risk
)
from pdcare.services.notifications import DATA_UPDATED, AlertDispatcher, EventBus, NotificationError
from pdcare.services.openai_service import MedicationAdvisor, MedicationAdvisorError
from pdcare.services.pdf_generator import PatientSummaryPDFGenerator
from pdcare.services.pet_test import DEFAULT_PET_VALUES, TRANSPORT_CLASSES, calculate_pet_ratios

logger = logging.getLogger(__name__)

VIEW_NAMES = [
    "Overview", "Daily Log", "Labs & Medications", "AI Suggestions", "Peritonitis",
    "PET Test", "Clinic KPIs", "Audit Log", "Export",
]

DIALYSATE_TYPES = ["Dextrose 1.5%", "Dextrose 2.5%", "Dextrose 4.25%", "Icodextrin 7.5%"]

# -----------------------------
# Helper Functions
# -----------------------------

def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def now_str():
    return datetime.now().strftime("%H:%M:%S")


def log(msg: str):
    # Save to database
    patient_id = st.session_state.get("selected_patient_id")
    log_event(msg, patient_id)
    # Also update session_state for immediate display
    event = AuditEvent(ts=now_str(), msg=msg, patient_id=patient_id)
    st.session_state.audit_log.insert(0, event)


def get_bus() -> EventBus:
    """One event bus per browser session; data changes drop the cached records"""
    if "bus" not in st.session_state:
        bus = EventBus()
        bus.subscribe(DATA_UPDATED, lambda payload: st.session_state.pop("records", None))
        st.session_state.bus = bus
    return st.session_state.bus


def load_records() -> List[PatientRecord]:
    if "records" not in st.session_state:
        st.session_state.records = get_all_patient_records()
    return st.session_state.records


def get_record(pid: str):
    for record in load_records():
        if record.patient_id == pid:
            return record
    return None


def severity_badge(alert: Alert) -> str:
    return "🔴" if alert.severity == AlertSeverity.CRITICAL else "🟡"


def format_rate(rate: float) -> str:
    return "∞" if math.isinf(rate) else f"{rate:.2f}"


def dispatch_cloudy_alerts(record: PatientRecord, events: List[PDEvent]):
    """Email/WhatsApp the clinic for each newly saved cloudy exchange"""
    dispatcher = AlertDispatcher()
    for event in events:
        try:
            status = dispatcher.send_cloudy_fluid_alert(record.patient, event)
        except NotificationError as e:
            st.error(f"❌ Failed to notify clinic: {str(e)}")
            log(f"Cloudy fluid alert failed for {record.patient.name}: {str(e)}")
            continue
        if status["email"] == "sent":
            st.warning("🚨 Cloudy fluid reported. The clinic has been notified by email and WhatsApp.")
        else:
            st.warning("🚨 Cloudy fluid reported. Email is not configured; WhatsApp alert was simulated.")
        log(f"Cloudy fluid alert dispatched for {record.patient.name} ({event.exchange_id})")

# -----------------------------
# Dialogs
# -----------------------------

@st.dialog("Register New Patient")
def register_patient_dialog():
    """Dialog for registering a new PD patient"""
    col1, col2 = st.columns(2)
    with col1:
        first_name = st.text_input("First Name")
        physician = st.text_input("Physician", placeholder="e.g., Dr. Sachin")
        phone = st.text_input("Mobile")
        gender = st.selectbox("Gender", ["Male", "Female", "Other"])
    with col2:
        last_name = st.text_input("Last Name")
        nephro_id = st.text_input("Nephro ID")
        status = st.selectbox("Status", PatientStatus.values())
        exchange_type = st.selectbox("PD Exchange Type", ["Self", "Assisted"])
    dob = st.date_input("Date of Birth", value=None, min_value=date(1920, 1, 1))
    pd_start = st.date_input("PD Start Date", value=None)
    disease = st.text_input("Underlying Kidney Disease")

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Register", type="primary"):
            if not (first_name.strip() and last_name.strip() and physician.strip()):
                st.error("First name, last name and physician are required")
                return
            patient = Patient(
                patient_id=new_id("PAT"),
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                physician=physician.strip(),
                nephro_id=nephro_id.strip(),
                status=status,
                gender=gender,
                date_of_birth=dob.isoformat() if dob else None,
                contact_phone=phone.strip() or None,
                underlying_kidney_disease=disease.strip() or None,
                pd_exchange_type=exchange_type,
                pd_start_date=pd_start.isoformat() if pd_start else None,
            )
            create_patient(patient, bus=get_bus())
            st.session_state.selected_patient_id = patient.patient_id
            log(f"Registered patient → {patient.name}")
            st.rerun()
    with col2:
        if st.button("Cancel"):
            st.rerun()

# -----------------------------
# Session state init
# -----------------------------
def init_state():
    get_bus()
    records = load_records()

    if "selected_patient_id" not in st.session_state:
        if records:
            st.session_state.selected_patient_id = records[0].patient_id

    if "active_view" not in st.session_state:
        st.session_state.active_view = "Overview"

    # Load audit log from database
    if "audit_log" not in st.session_state:
        st.session_state.audit_log = get_recent_logs(limit=50)

# -----------------------------
# Sidebar
# -----------------------------
def render_sidebar():
    st.sidebar.header("PD Clinic Dashboard")

    q = st.sidebar.text_input("🔍 Patient Search (Name / ID)", value="")
    status_filter = st.sidebar.selectbox("Status", ["All"] + PatientStatus.values(), index=0)
    physician_filter = st.sidebar.selectbox("Physician", ["All"] + get_physicians(), index=0)

    filtered = search_patients(q, status_filter, physician_filter)
    st.sidebar.markdown(f"**Patient List** · {len(filtered)} patients")

    if not filtered:
        st.sidebar.info("No patients match filters.")
    else:
        # Keep selection stable
        if st.session_state.get("selected_patient_id") not in [p.patient_id for p in filtered]:
            st.session_state.selected_patient_id = filtered[0].patient_id

        with st.sidebar.container(height=400):
            for p in filtered:
                record = get_record(p.patient_id)
                alerts = evaluate_alerts(record) if record else []
                critical = sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL)
                marker = "✓ " if p.patient_id == st.session_state.selected_patient_id else ""
                badge = f"🔴 {critical}" if critical else (f"🟡 {len(alerts)}" if alerts else "🟢")
                if st.button(
                    f"{marker}{p.name}\n{p.patient_id} · {p.status} · {badge}",
                    key=f"patient_{p.patient_id}",
                    use_container_width=True,
                    type="primary" if marker else "secondary"
                ):
                    st.session_state.selected_patient_id = p.patient_id
                    log(f"Selected patient → {p.name}")
                    st.rerun()

    st.sidebar.divider()

    if st.sidebar.button("➕ Register Patient"):
        register_patient_dialog()

    ok, msg = validate_config()
    if not ok:
        st.sidebar.warning(msg)

# -----------------------------
# Main shell (summary + header + views)
# -----------------------------
def render_clinic_summary(records: List[PatientRecord]):
    summary = compute_dashboard_summary(records)
    cols = st.columns(4)
    cols[0].metric("Total Patients", summary["total_patients"])
    cols[1].metric("Critical Alerts", summary["critical_alert_patients"])
    cols[2].metric("Images for Review", summary["images_for_review"])
    cols[3].metric("Not Logged Today", summary["not_logged_today"])


def render_header(record: PatientRecord, alerts: List[Alert]):
    p = record.patient
    st.markdown(f"<h2 style='margin-bottom: 0.5rem;'>{p.name}</h2>", unsafe_allow_html=True)
    left, right = st.columns([3, 1])
    with left:
        st.markdown(
            f"ID: `{p.patient_id}` • Nephro ID: `{p.nephro_id or 'N/A'}` • "
            f"Physician: `{p.physician}` • Exchange: `{p.pd_exchange_type}`"
        )
    with right:
        st.markdown(f"**Status:** `{p.status}`")
        critical = sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL)
        st.markdown(f"**Alerts:** {len(alerts)} ({critical} critical)")


def render_views(record: PatientRecord, alerts: List[Alert]):
    chosen = st.radio(
        "Views",
        VIEW_NAMES,
        index=VIEW_NAMES.index(st.session_state.active_view),
        horizontal=True,
        label_visibility="collapsed",
    )
    if chosen != st.session_state.active_view:
        st.session_state.active_view = chosen
        st.rerun()

    st.divider()

    view = st.session_state.active_view
    if view == "Overview":
        render_overview_view(record, alerts)
    elif view == "Daily Log":
        render_daily_log_view(record)
    elif view == "Labs & Medications":
        render_labs_view(record)
    elif view == "AI Suggestions":
        render_ai_view(record)
    elif view == "Peritonitis":
        render_peritonitis_view(record)
    elif view == "PET Test":
        render_pet_view(record)
    elif view == "Clinic KPIs":
        render_kpi_view()
    elif view == "Audit Log":
        render_audit_view()
    elif view == "Export":
        render_export_view(record, alerts)

# -----------------------------
# View content
# -----------------------------
def render_overview_view(record: PatientRecord, alerts: List[Alert]):
    p = record.patient

    st.markdown("### 🚨 Active Alerts")
    if not alerts:
        st.success("No active alerts")
    for alert in alerts:
        text = f"{severity_badge(alert)} **{alert.category.replace('_', ' ').title()}**: {alert.message}"
        if alert.severity == AlertSeverity.CRITICAL:
            st.error(text)
        else:
            st.warning(text)

    st.divider()

    st.markdown("### 📋 Latest Vitals")
    if record.vitals:
        v = record.vitals[0]
        col1, col2, col3, col4 = st.columns(4)
        col1.metric("Blood Pressure", f"{v.systolic_bp or '-'}/{v.diastolic_bp or '-'}")
        col2.metric("Heart Rate", v.heart_rate or "-")
        col3.metric("Temperature (°C)", v.temperature_c or "-")
        col4.metric("Weight (kg)", v.weight_kg or "-")
        st.caption(f"Measured {v.measured_at}")
    else:
        st.info("No vitals recorded")

    images = [img for img in record.uploaded_images if img.requires_review]
    if images:
        st.markdown("### 🖼️ Images Awaiting Review")
        for img in images:
            col1, col2 = st.columns([4, 1])
            col1.write(f"**{img.image_type}** uploaded {img.uploaded_at} {img.image_url}")
            if col2.button("Mark reviewed", key=f"review_{img.image_id}"):
                mark_image_reviewed(p.patient_id, img.image_id, bus=get_bus())
                log(f"Reviewed {img.image_type} image for {p.name}")
                st.rerun()

    st.divider()

    st.markdown("### 📝 Physician Notes")
    with st.form("doctor_notes_form"):
        notes = st.text_area(
            "Notes",
            value=p.doctor_notes or "",
            height=160,
            label_visibility="collapsed"
        )
        if st.form_submit_button("💾 Save Notes", type="primary"):
            save_doctor_notes(p.patient_id, notes, bus=get_bus())
            log(f"Updated physician notes for {p.name}")
            st.success("✅ Notes saved")


def render_daily_log_view(record: PatientRecord):
    p = record.patient
    st.subheader("Daily PD Log")

    count = st.number_input("Exchanges to record", min_value=1, max_value=6,
                            value=ALERT_THRESHOLDS["prescribed_daily_exchanges"])

    with st.form("daily_log_form", clear_on_submit=True):
        exchanges = []
        for i in range(int(count)):
            st.markdown(f"**Exchange {i + 1}**")
            c1, c2, c3, c4 = st.columns(4)
            dialysate = c1.selectbox("Dialysate", DIALYSATE_TYPES, key=f"dialysate_{i}")
            fill = c2.number_input("Fill (mL)", min_value=0, value=2000, step=50, key=f"fill_{i}")
            drain = c3.number_input("Drain (mL)", min_value=0, value=2100, step=50, key=f"drain_{i}")
            dwell = c4.number_input("Dwell (h)", min_value=0.0, value=4.0, step=0.5, key=f"dwell_{i}")
            c5, c6 = st.columns([1, 3])
            cloudy = c5.checkbox("Cloudy effluent", key=f"cloudy_{i}")
            complications = c6.text_input("Complications", key=f"complications_{i}")
            exchanges.append((dialysate, fill, drain, dwell, cloudy, complications))

        st.markdown("**Vitals**")
        c1, c2, c3, c4, c5 = st.columns(5)
        systolic = c1.number_input("Systolic", min_value=0, value=0)
        diastolic = c2.number_input("Diastolic", min_value=0, value=0)
        heart_rate = c3.number_input("Heart rate", min_value=0, value=0)
        temperature = c4.number_input("Temp (°C)", min_value=0.0, value=0.0, step=0.1)
        weight = c5.number_input("Weight (kg)", min_value=0.0, value=0.0, step=0.1)
        fluid_notes = st.text_input("Fluid status notes")
        urine = st.number_input("Urine output today (mL)", min_value=0, value=0, step=50)
        image = st.file_uploader("Exit-site / fluid bag photo", type=["png", "jpg", "jpeg"])
        image_type = st.selectbox("Photo type", ["exit-site", "fluid-bag"])

        submitted = st.form_submit_button("💾 Save Daily Log", type="primary")

    if submitted:
        stamp = datetime.now().replace(microsecond=0).isoformat()
        events = [
            PDEvent(
                exchange_id=new_id("PD"),
                exchange_at=stamp,
                dialysate_type=dialysate,
                fill_volume_ml=fill,
                drain_volume_ml=drain,
                dwell_time_hours=dwell,
                is_effluent_cloudy=cloudy,
                complications=complications or None,
            )
            for dialysate, fill, drain, dwell, cloudy, complications in exchanges
        ]
        vital = None
        if any([systolic, diastolic, heart_rate, temperature, weight, fluid_notes]):
            vital = Vital(
                vital_id=new_id("VIT"),
                measured_at=stamp,
                systolic_bp=systolic or None,
                diastolic_bp=diastolic or None,
                heart_rate=heart_rate or None,
                temperature_c=temperature or None,
                weight_kg=weight or None,
                fluid_status_notes=fluid_notes or None,
            )
        urine_log = UrineOutputLog(log_id=new_id("URO"), log_date=stamp, volume_ml=urine) if urine else None

        bus = get_bus()
        saved = save_patient_log(p.patient_id, events, vital, urine_log, bus=bus)
        if image is not None:
            add_uploaded_image(p.patient_id, UploadedImage(
                image_id=new_id("IMG"), image_type=image_type, uploaded_at=stamp, image_url=image.name
            ), bus=bus)
        log(f"Saved daily log for {p.name}: {saved['events']} exchanges")
        st.success("✅ Daily log saved")

        cloudy_events = [e for e in events if e.is_effluent_cloudy and e.exchange_id in saved["new_event_ids"]]
        if cloudy_events:
            dispatch_cloudy_alerts(record, cloudy_events)

    st.divider()

    st.markdown("### 📈 Log Analytics")
    analytics = compute_pd_log_analytics(record)
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Missed Logs (30d)", f"{analytics['missed_log_percentage']:.0f}%")
    col2.metric("Avg Daily UF", f"{analytics['avg_uf']:.0f} mL")
    col3.metric("Min Daily UF", f"{analytics['min_uf']:.0f} mL")
    col4.metric("Max Daily UF", f"{analytics['max_uf']:.0f} mL")
    if analytics["uf_drop"]:
        st.warning(
            f"⚠️ Ultrafiltration dropped: recent {analytics['recent_uf']:.0f} mL/day "
            f"vs baseline {analytics['baseline_uf']:.0f} mL/day"
        )

    if record.pd_events:
        rows = [
            {
                "Time": e.exchange_at,
                "Dialysate": e.dialysate_type,
                "Fill (mL)": e.fill_volume_ml,
                "Drain (mL)": e.drain_volume_ml,
                "UF (mL)": e.ultrafiltration_ml,
                "Cloudy": "Yes" if e.is_effluent_cloudy else "No",
                "Complications": e.complications or "",
            }
            for e in record.pd_events
        ]
        st.dataframe(rows, use_container_width=True, hide_index=True)
        st.line_chart(list(reversed(rows)), x="Time", y="UF (mL)")


def render_labs_view(record: PatientRecord):
    p = record.patient
    bus = get_bus()

    st.markdown("### 🧪 Lab Results")
    if record.lab_results:
        flags = {"high": "🔺 H", "low": "🔻 L"}
        st.dataframe([
            {
                "Date": lab.resulted_at[:10],
                "Test": lab.test_name,
                "Value": lab.value,
                "Units": lab.units,
                "Reference": f"{lab.reference_low if lab.reference_low is not None else ''} - "
                             f"{lab.reference_high if lab.reference_high is not None else ''}",
                "Flag": flags.get(classify_lab_result(lab), ""),
            }
            for lab in record.lab_results
        ], use_container_width=True, hide_index=True)
    else:
        st.info("No lab results recorded")

    with st.expander("➕ Add Lab Result"):
        with st.form("lab_form", clear_on_submit=True):
            c1, c2, c3 = st.columns(3)
            test_name = c1.text_input("Test")
            value = c2.number_input("Value", value=0.0, format="%.2f")
            units = c3.text_input("Units")
            c4, c5 = st.columns(2)
            ref_low = c4.text_input("Reference low")
            ref_high = c5.text_input("Reference high")
            if st.form_submit_button("Add"):
                if test_name.strip() and units.strip():
                    add_lab_results(p.patient_id, [LabResult(
                        lab_result_id=new_id("LAB"),
                        resulted_at=datetime.now().replace(microsecond=0).isoformat(),
                        test_name=test_name.strip(),
                        value=value,
                        units=units.strip(),
                        reference_low=float(ref_low) if ref_low.strip() else None,
                        reference_high=float(ref_high) if ref_high.strip() else None,
                    )], bus=bus)
                    log(f"Added {test_name} result for {p.name}")
                    st.rerun()
                else:
                    st.error("Test name and units are required")

    st.divider()

    st.markdown("### 💊 Medications")
    current = [m for m in record.medications if not m.end_date]
    if not current:
        st.info("No current medications")
    for med in current:
        col1, col2 = st.columns([4, 1])
        icon = "⚠️" if med.status == "warning" else "💊"
        col1.write(f"{icon} **{med.name}** {med.dosage}, {med.frequency} (since {med.start_date})")
        if col2.button("Discontinue", key=f"stop_{med.medication_id}"):
            med.end_date = date.today().isoformat()
            replace_medications(p.patient_id, record.medications, bus=bus)
            log(f"Discontinued {med.name} for {p.name}")
            st.rerun()

    with st.expander("➕ Add Medication"):
        with st.form("medication_form", clear_on_submit=True):
            c1, c2, c3 = st.columns(3)
            name = c1.text_input("Medication")
            dosage = c2.text_input("Dosage")
            frequency = c3.text_input("Frequency")
            reason = st.text_input("Reason")
            if st.form_submit_button("Add"):
                if name.strip() and dosage.strip() and frequency.strip():
                    medications = record.medications + [Medication(
                        medication_id=new_id("MED"),
                        name=name.strip(),
                        dosage=dosage.strip(),
                        frequency=frequency.strip(),
                        start_date=date.today().isoformat(),
                        prescribing_doctor=p.physician,
                        reason=reason.strip() or None,
                    )]
                    replace_medications(p.patient_id, medications, bus=bus)
                    log(f"Added medication {name} for {p.name}")
                    st.rerun()
                else:
                    st.error("Medication, dosage and frequency are required")

    st.divider()

    st.markdown("### 📊 Adequacy & Patient Reported Outcomes")
    col1, col2 = st.columns(2)
    with col1:
        for test in record.adequacy_tests:
            st.write(f"`{test.test_date[:10]}` Total Kt/V {test.total_ktv} · Peritoneal Kt/V {test.peritoneal_ktv}")
        with st.form("adequacy_form", clear_on_submit=True):
            total = st.number_input("Total Kt/V", min_value=0.0, step=0.01)
            peritoneal = st.number_input("Peritoneal Kt/V", min_value=0.0, step=0.01)
            if st.form_submit_button("Add Kt/V"):
                add_adequacy_test(p.patient_id, PDAdequacy(
                    test_id=new_id("KTV"), test_date=date.today().isoformat(),
                    total_ktv=total, peritoneal_ktv=peritoneal
                ), bus=bus)
                log(f"Recorded Kt/V for {p.name}")
                st.rerun()
    with col2:
        for survey in record.pro_surveys:
            st.write(f"`{survey.survey_date[:10]}` {survey.survey_tool}: {survey.score} {survey.summary or ''}")
        with st.form("pro_form", clear_on_submit=True):
            tool = st.selectbox("Survey tool", ["KDQOL-36", "PHQ-9", "Other"])
            score = st.number_input("Score", min_value=0.0, step=1.0)
            summary = st.text_input("Summary")
            if st.form_submit_button("Add Survey"):
                add_pro_survey(p.patient_id, PROSurvey(
                    survey_id=new_id("PRO"), survey_date=date.today().isoformat(),
                    survey_tool=tool, score=score, summary=summary or None
                ), bus=bus)
                log(f"Recorded {tool} survey for {p.name}")
                st.rerun()


def render_ai_view(record: PatientRecord):
    st.subheader("AI Medication Suggestions")
    st.write(f"Suggest medication adjustments with {OPENAI_MODEL} based on the complete patient record.")
    st.caption("Suggestions must be reviewed by the treating nephrologist before any change.")

    key = f"suggestions_{record.patient_id}"
    if st.button("🤖 Generate Suggestions", type="primary"):
        if not OPENAI_API_KEY:
            st.error("OpenAI API key not configured")
            return
        try:
            with st.spinner("Analyzing patient data..."):
                advisor = MedicationAdvisor(OPENAI_API_KEY, OPENAI_MODEL)
                st.session_state[key] = advisor.suggest_adjustments(record)
            log(f"Generated {len(st.session_state[key])} medication suggestions for {record.patient.name}")
        except MedicationAdvisorError as e:
            st.error(f"❌ {str(e)}")
            log(f"Medication suggestion error: {str(e)}")
            return

    suggestions = st.session_state.get(key)
    if suggestions is None:
        return
    if not suggestions:
        st.info("No medication adjustments suggested")
    for s in suggestions:
        with st.expander(f"💊 {s.medication_name}: {s.suggested_change}", expanded=True):
            st.write(s.reasoning)


def render_peritonitis_view(record: PatientRecord):
    p = record.patient
    records = load_records()

    col1, col2, col3 = st.columns(3)
    col1.metric("Clinic Rate (episodes / patient-year)", format_rate(compute_peritonitis_rate(records)))
    col2.metric("Patient Rate", format_rate(compute_peritonitis_rate([record])))
    col3.metric("Patient Episodes (excl. relapses)", count_new_episodes(record))

    st.markdown("### 🦠 Episodes")
    if record.peritonitis_episodes:
        st.dataframe([
            {
                "Diagnosed": ep.diagnosis_date,
                "Organism": ep.organism,
                "Treatment": ep.treatment_regimen,
                "Outcome": ep.outcome,
                "Resolved": ep.resolution_date or "",
            }
            for ep in record.peritonitis_episodes
        ], use_container_width=True, hide_index=True)
    else:
        st.info("No history of peritonitis")

    with st.expander("➕ Record Episode"):
        with st.form("episode_form", clear_on_submit=True):
            diagnosed = st.date_input("Diagnosis date", value=date.today())
            organism = st.text_input("Organism isolated")
            regimen = st.text_input("Treatment regimen")
            outcome = st.selectbox(
                "Outcome", ["In Treatment", "Resolved", "Catheter Removal", "Transferred to HD", "Deceased"]
            )
            if st.form_submit_button("Save Episode"):
                add_peritonitis_episode(p.patient_id, PeritonitisEpisode(
                    episode_id=new_id("EP"),
                    diagnosis_date=diagnosed.isoformat(),
                    organism=organism.strip() or "Culture negative",
                    treatment_regimen=regimen.strip(),
                    outcome=outcome,
                    resolution_date=date.today().isoformat() if outcome == "Resolved" else None,
                ), bus=get_bus())
                log(f"Recorded peritonitis episode for {p.name}")
                st.rerun()

    st.divider()

    st.markdown("### 🎯 Highest Peritonitis Risk")
    for ranked, score in rank_by_peritonitis_risk(records):
        st.write(f"**{ranked.patient.name}** ({ranked.patient_id}): risk score {score}")


def render_pet_view(record: PatientRecord):
    st.subheader("Peritoneal Equilibration Test")
    st.caption(f"Patient: {record.patient.name}")

    labels = {
        "serum_creatinine": "Serum creatinine (mg/dL)",
        "dialysate_creatinine_2h": "Dialysate creatinine 2h",
        "dialysate_creatinine_4h": "Dialysate creatinine 4h",
        "dialysate_glucose_0h": "Dialysate glucose 0h (mg/dL)",
        "dialysate_glucose_2h": "Dialysate glucose 2h",
        "dialysate_glucose_4h": "Dialysate glucose 4h",
    }
    values = {}
    cols = st.columns(3)
    for i, (field, label) in enumerate(labels.items()):
        values[field] = cols[i % 3].number_input(label, min_value=0.0, value=DEFAULT_PET_VALUES[field], step=0.01)

    if st.button("Calculate", type="primary"):
        result = calculate_pet_ratios(values)
        st.session_state.pet_result = result
        log(f"PET calculated for {record.patient.name}: {result.transport_type}")

    result = st.session_state.get("pet_result")
    if result is None:
        return

    def fmt(value):
        return f"{value:.2f}" if value is not None else "N/A"

    st.metric("Transport Type", result.transport_type)
    st.dataframe([
        {"Hour": 0, "D/P Creatinine": "0.00", "D/D0 Glucose": "1.00"},
        {"Hour": 2, "D/P Creatinine": fmt(result.dp_creatinine_2h), "D/D0 Glucose": fmt(result.dd0_glucose_2h)},
        {"Hour": 4, "D/P Creatinine": fmt(result.dp_creatinine_4h), "D/D0 Glucose": fmt(result.dd0_glucose_4h)},
    ], use_container_width=True, hide_index=True)
    st.caption(" · ".join(f"{label} ≥ {bound:.2f}" for bound, label in TRANSPORT_CLASSES))


def render_kpi_view():
    records = load_records()
    kpis = compute_clinic_kpis(records)
    nurse = compute_nurse_metrics(records)

    st.subheader("Clinic KPIs")
    cols = st.columns(3)
    cols[0].metric("Active PD", kpis.active_pd)
    cols[1].metric("Appointments This Week", kpis.appointments_this_week)
    cols[2].metric("New Starts Last Month", kpis.new_starts_last_month)
    cols = st.columns(3)
    cols[0].metric("Dropouts", kpis.dropouts)
    cols[1].metric("Awaiting Catheter", kpis.awaiting_catheter)
    cols[2].metric("Missed Visits", kpis.missed_visits)
    st.metric("Peritonitis Rate (episodes / patient-year)", format_rate(compute_peritonitis_rate(records)))

    st.divider()

    st.subheader("PD Nurse Overview")
    cols = st.columns(4)
    cols[0].metric("Awaiting Catheter", nurse["awaiting_catheter"])
    cols[1].metric("In Training", nurse["in_training"])
    cols[2].metric("On Peritonitis Treatment", nurse["on_peritonitis_treatment"])
    cols[3].metric("Appointments Today", nurse["appointments_today"])

    st.markdown("**Upcoming Home Visits (next 30 days)**")
    if not nurse["upcoming_home_visits"]:
        st.info("No home visits due")
    for due, patient in nurse["upcoming_home_visits"]:
        st.write(f"`{due.isoformat()}` {patient.name} ({patient.patient_id})")


def render_audit_view():
    st.subheader("Audit Log")
    for e in st.session_state.audit_log[:50]:
        st.write(f"`{e.ts}`  {e.msg}")


def render_export_view(record: PatientRecord, alerts: List[Alert]):
    st.subheader("📥 Export Patient Summary")
    include_rate = st.checkbox("Include clinic peritonitis rate", value=True)

    if st.button("📄 Generate Summary (PDF)", type="primary"):
        try:
            kpi_note = None
            if include_rate:
                rate = compute_peritonitis_rate(load_records())
                kpi_note = f"Clinic peritonitis rate: {format_rate(rate)} episodes per patient-year"

            with st.spinner("🔄 Generating PDF..."):
                generator = PatientSummaryPDFGenerator()
                pdf_bytes = generator.generate_patient_summary_pdf(record, alerts, kpi_note=kpi_note)

            filename = f"pd_summary_{record.patient_id}_{date.today().isoformat()}.pdf"
            st.download_button(
                label="💾 Download PDF",
                data=pdf_bytes,
                file_name=filename,
                mime="application/pdf"
            )
            log(f"Exported patient summary as PDF: {filename}")
            st.success("✅ PDF generated successfully!")

        except Exception as e:
            logger.exception("PDF generation failed")
            st.error(f"❌ Failed to generate PDF: {str(e)}")
            log(f"PDF generation error: {str(e)}")

# -----------------------------
# App entry
# -----------------------------
def main():
    st.set_page_config(page_title="PD Clinic Dashboard", layout="wide")
    configure_logging()

    # Initialize database on first run
    init_database()

    init_state()
    render_sidebar()

    records = load_records()
    if not records:
        st.error("No patients found in database. Please register a patient first.")
        return

    render_clinic_summary(records)
    st.divider()

    record = get_record(st.session_state.get("selected_patient_id"))
    if record is None:
        st.error("Error loading patient. Please try refreshing the page.")
        return

    alerts = evaluate_alerts(record)
    render_header(record, alerts)
    render_views(record, alerts)

if __name__ == "__main__":
    main()
