# database.py
# Database initialization and connection management
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timedelta

from .config import DB_PATH

logger = logging.getLogger(__name__)

# SQL schema definitions
CREATE_PATIENTS_TABLE = """
CREATE TABLE IF NOT EXISTS patients (
    patient_id TEXT PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    physician TEXT NOT NULL,
    nephro_id TEXT DEFAULT '',
    status TEXT DEFAULT 'Active PD',
    gender TEXT DEFAULT 'Other',
    date_of_birth TEXT,
    contact_phone TEXT,
    contact_email TEXT,
    emergency_contact_name TEXT,
    emergency_contact_phone TEXT,
    underlying_kidney_disease TEXT,
    pd_exchange_type TEXT DEFAULT 'Self',
    pd_start_date TEXT,
    next_appointment TEXT,
    last_home_visit_date TEXT,
    doctor_notes TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    last_updated TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_VITALS_TABLE = """
CREATE TABLE IF NOT EXISTS vitals (
    vital_id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    measured_at TEXT NOT NULL,
    systolic_bp REAL,
    diastolic_bp REAL,
    heart_rate REAL,
    temperature_c REAL,
    weight_kg REAL,
    respiratory_rate REAL,
    fluid_status_notes TEXT,
    FOREIGN KEY (patient_id) REFERENCES patients(patient_id) ON DELETE CASCADE
);
"""

CREATE_LAB_RESULTS_TABLE = """
CREATE TABLE IF NOT EXISTS lab_results (
    lab_result_id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    resulted_at TEXT NOT NULL,
    test_name TEXT NOT NULL,
    value REAL NOT NULL,
    units TEXT NOT NULL,
    reference_low REAL,
    reference_high REAL,
    FOREIGN KEY (patient_id) REFERENCES patients(patient_id) ON DELETE CASCADE
);
"""

CREATE_PD_EVENTS_TABLE = """
CREATE TABLE IF NOT EXISTS pd_events (
    exchange_id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    exchange_at TEXT NOT NULL,
    dialysate_type TEXT NOT NULL,
    fill_volume_ml REAL NOT NULL,
    drain_volume_ml REAL NOT NULL,
    dwell_time_hours REAL DEFAULT 0,
    ultrafiltration_ml REAL,
    is_effluent_cloudy BOOLEAN DEFAULT 0,
    complications TEXT,
    recorded_by TEXT DEFAULT 'Patient',
    FOREIGN KEY (patient_id) REFERENCES patients(patient_id) ON DELETE CASCADE
);
"""

CREATE_MEDICATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS medications (
    medication_id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    name TEXT NOT NULL,
    dosage TEXT NOT NULL,
    frequency TEXT NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT,
    prescribing_doctor TEXT,
    reason TEXT,
    status TEXT DEFAULT 'ok',
    FOREIGN KEY (patient_id) REFERENCES patients(patient_id) ON DELETE CASCADE
);
"""

CREATE_PERITONITIS_TABLE = """
CREATE TABLE IF NOT EXISTS peritonitis_episodes (
    episode_id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    diagnosis_date TEXT NOT NULL,
    organism TEXT NOT NULL,
    treatment_regimen TEXT DEFAULT '',
    outcome TEXT DEFAULT 'In Treatment',
    resolution_date TEXT,
    FOREIGN KEY (patient_id) REFERENCES patients(patient_id) ON DELETE CASCADE
);
"""

CREATE_URINE_OUTPUT_TABLE = """
CREATE TABLE IF NOT EXISTS urine_output_logs (
    log_id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    log_date TEXT NOT NULL,
    volume_ml REAL NOT NULL,
    FOREIGN KEY (patient_id) REFERENCES patients(patient_id) ON DELETE CASCADE
);
"""

CREATE_UPLOADED_IMAGES_TABLE = """
CREATE TABLE IF NOT EXISTS uploaded_images (
    image_id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    image_type TEXT NOT NULL,
    uploaded_at TEXT NOT NULL,
    image_url TEXT DEFAULT '',
    requires_review BOOLEAN DEFAULT 1,
    FOREIGN KEY (patient_id) REFERENCES patients(patient_id) ON DELETE CASCADE
);
"""

CREATE_PRO_SURVEYS_TABLE = """
CREATE TABLE IF NOT EXISTS pro_surveys (
    survey_id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    survey_date TEXT NOT NULL,
    survey_tool TEXT NOT NULL,
    score REAL NOT NULL,
    summary TEXT,
    FOREIGN KEY (patient_id) REFERENCES patients(patient_id) ON DELETE CASCADE
);
"""

CREATE_ADEQUACY_TABLE = """
CREATE TABLE IF NOT EXISTS adequacy_tests (
    test_id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    test_date TEXT NOT NULL,
    total_ktv REAL,
    peritoneal_ktv REAL,
    FOREIGN KEY (patient_id) REFERENCES patients(patient_id) ON DELETE CASCADE
);
"""

CREATE_AUDIT_LOG_TABLE = """
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    patient_id TEXT,
    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    message TEXT NOT NULL
);
"""

ALL_TABLES = [
    CREATE_PATIENTS_TABLE,
    CREATE_VITALS_TABLE,
    CREATE_LAB_RESULTS_TABLE,
    CREATE_PD_EVENTS_TABLE,
    CREATE_MEDICATIONS_TABLE,
    CREATE_PERITONITIS_TABLE,
    CREATE_URINE_OUTPUT_TABLE,
    CREATE_UPLOADED_IMAGES_TABLE,
    CREATE_PRO_SURVEYS_TABLE,
    CREATE_ADEQUACY_TABLE,
    CREATE_AUDIT_LOG_TABLE,
]


class DatabaseConnection:
    """Database connection manager for Streamlit compatibility"""

    @classmethod
    def get_connection(cls) -> sqlite3.Connection:
        """Get a fresh database connection for each operation"""
        conn = sqlite3.connect(
            str(DB_PATH),
            timeout=30.0,  # Wait up to 30 seconds for locks
            check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode=WAL")
        return conn


def init_database(seed: bool = True):
    """Initialize database schema and seed demo data if needed"""
    try:
        with closing(DatabaseConnection.get_connection()) as conn:
            cursor = conn.cursor()
            for statement in ALL_TABLES:
                cursor.execute(statement)
            conn.commit()

            cursor.execute("SELECT COUNT(*) FROM patients")
            count = cursor.fetchone()[0]

        if seed and count == 0:
            seed_demo_data()
    except sqlite3.OperationalError as e:
        # Database locked by another session; tables exist from a previous run
        logger.warning("Database initialization skipped: %s", e)


def seed_demo_data():
    """Seed database with 3 demo patients and recent clinical history"""
    now = datetime.now().replace(microsecond=0)

    def ago(**delta) -> str:
        return (now - timedelta(**delta)).isoformat()

    def ahead(**delta) -> str:
        return (now + timedelta(**delta)).isoformat()

    demo_patients = [
        ("PAT-001", "Abdul", "Talal", "Dr. Abdullah, Majed", "NEPH-1001", "Active PD", "Male",
         "1980-01-07", "+1 555 0101", "Diabetic Nephropathy", "Self", "2022-01-20", ahead(days=2)),
        ("PAT-002", "Fred", "Mendes", "Dr. Sachin", "NEPH-1002", "Active PD", "Male",
         "1965-05-12", "+1 555 0102", "Hypertensive Nephrosclerosis", "Assisted", "2023-03-02", ago(days=3)),
        ("PAT-003", "Maria", "Iqbal", "Dr. Atul", "NEPH-1003", "Awaiting Catheter", "Female",
         "1991-09-30", "+1 555 0103", "IgA Nephropathy", "Self", None, ahead(days=10)),
    ]

    with closing(DatabaseConnection.get_connection()) as conn:
        cursor = conn.cursor()
        cursor.executemany("""
            INSERT INTO patients (patient_id, first_name, last_name, physician, nephro_id, status, gender,
                                  date_of_birth, contact_phone, underlying_kidney_disease, pd_exchange_type,
                                  pd_start_date, next_appointment)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, demo_patients)

        cursor.executemany("""
            INSERT INTO vitals (vital_id, patient_id, measured_at, systolic_bp, diastolic_bp, heart_rate,
                                temperature_c, weight_kg, respiratory_rate, fluid_status_notes)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            ("VIT-001", "PAT-001", ago(days=1), 130, 80, 75, 36.8, 65.0, 16, None),
            ("VIT-002", "PAT-001", ago(days=2), 135, 82, 72, 36.9, 65.2, 16, None),
            ("VIT-003", "PAT-002", ago(days=1), 185, 100, 90, 38.4, 80.0, 18, "Mild ankle edema"),
            ("VIT-004", "PAT-002", ago(days=5), 150, 90, 84, 37.0, 76.0, 17, None),
        ])

        cursor.executemany("""
            INSERT INTO lab_results (lab_result_id, patient_id, resulted_at, test_name, value, units,
                                     reference_low, reference_high)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            ("LAB-001", "PAT-001", ago(days=4), "Creatinine", 7.2, "mg/dL", 0.6, 1.2),
            ("LAB-002", "PAT-001", ago(days=4), "Potassium", 4.5, "mmol/L", 3.5, 5.1),
            ("LAB-003", "PAT-002", ago(days=6), "Hemoglobin", 9.1, "g/dL", 12.0, 16.0),
        ])

        cursor.executemany("""
            INSERT INTO pd_events (exchange_id, patient_id, exchange_at, dialysate_type, fill_volume_ml,
                                   drain_volume_ml, dwell_time_hours, ultrafiltration_ml, is_effluent_cloudy,
                                   complications, recorded_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            ("PD-001", "PAT-001", ago(hours=20), "Dextrose 1.5%", 2000, 2150, 4, 150, 0,
             "Mild pain on drain", "Patient"),
            ("PD-002", "PAT-001", ago(hours=26), "Icodextrin 7.5%", 2000, 2200, 8, 200, 0, None, "Patient"),
            ("PD-003", "PAT-002", ago(days=3, hours=2), "Dextrose 2.5%", 2000, 1900, 4, -100, 1,
             None, "Nurse"),
        ])

        cursor.executemany("""
            INSERT INTO medications (medication_id, patient_id, name, dosage, frequency, start_date, status)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [
            ("MED-001", "PAT-001", "Lisinopril", "10mg", "Once daily", "2022-01-20", "ok"),
            ("MED-002", "PAT-002", "Erythropoietin", "4000 IU", "Weekly", "2023-04-01", "warning"),
        ])

        cursor.executemany("""
            INSERT INTO peritonitis_episodes (episode_id, patient_id, diagnosis_date, organism,
                                              treatment_regimen, outcome, resolution_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [
            ("EP-001", "PAT-001", "2023-11-10", "Staphylococcus epidermidis",
             "Intraperitoneal vancomycin", "Resolved", "2023-11-24"),
        ])

        cursor.executemany("""
            INSERT INTO urine_output_logs (log_id, patient_id, log_date, volume_ml)
            VALUES (?, ?, ?, ?)
        """, [
            ("URO-001", "PAT-002", ago(days=3), 600),
            ("URO-002", "PAT-002", ago(days=2), 550),
            ("URO-003", "PAT-002", ago(days=1), 200),
        ])

        cursor.execute("""
            INSERT INTO uploaded_images (image_id, patient_id, image_type, uploaded_at, requires_review)
            VALUES (?, ?, ?, ?, 1)
        """, ("IMG-001", "PAT-002", "exit-site", ago(hours=6)))

        cursor.execute("""
            INSERT INTO audit_log (message) VALUES ('Database initialized with demo data')
        """)

        conn.commit()
    logger.info("Seeded database with %d demo patients", len(demo_patients))
