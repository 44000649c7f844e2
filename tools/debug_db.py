#!/usr/bin/env python3
"""
Database debugging utility for the PD clinic dashboard
Run: python3 tools/debug_db.py [view|alerts|kpis|reset --yes]
"""
import sqlite3
import sys
from contextlib import closing
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from pdcare.core.config import DB_PATH
from pdcare.core.database import init_database
from pdcare.services.alerts import evaluate_alerts
from pdcare.services.db_operations import get_all_patient_records
from pdcare.services.kpis import compute_clinic_kpis, compute_peritonitis_rate


def print_section(title):
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}")


def view_all_data():
    """View all data in the database"""
    with closing(sqlite3.connect(str(DB_PATH))) as conn:
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        print_section("PATIENTS")
        cursor.execute("SELECT * FROM patients ORDER BY last_name, first_name")
        for row in cursor.fetchall():
            print(f"  {row['patient_id']}: {row['first_name']} {row['last_name']} (Nephro ID: {row['nephro_id']})")
            print(f"    Status: {row['status']}, Physician: {row['physician']}, PD start: {row['pd_start_date']}")
            print(f"    Next appointment: {row['next_appointment']}")
            print()

        print_section("RECORD COUNTS")
        for table in ["vitals", "lab_results", "pd_events", "medications", "peritonitis_episodes",
                      "urine_output_logs", "uploaded_images", "pro_surveys", "adequacy_tests"]:
            cursor.execute(f"SELECT patient_id, COUNT(*) AS n FROM {table} GROUP BY patient_id")
            counts = ", ".join(f"{row['patient_id']}={row['n']}" for row in cursor.fetchall())
            print(f"  {table:<22} {counts or '-'}")

        print_section("CLOUDY EXCHANGES")
        cursor.execute("""
            SELECT e.*, p.first_name || ' ' || p.last_name AS name
            FROM pd_events e
            JOIN patients p ON e.patient_id = p.patient_id
            WHERE e.is_effluent_cloudy = 1
            ORDER BY e.exchange_at DESC
        """)
        rows = cursor.fetchall()
        if rows:
            for row in rows:
                print(f"  {row['exchange_at']} {row['name']}: {row['dialysate_type']}, UF {row['ultrafiltration_ml']} mL")
        else:
            print("  None")

        print_section("AUDIT LOG (Last 10 Events)")
        cursor.execute("""
            SELECT a.*, p.first_name || ' ' || p.last_name AS name
            FROM audit_log a
            LEFT JOIN patients p ON a.patient_id = p.patient_id
            ORDER BY a.timestamp DESC
            LIMIT 10
        """)
        for row in cursor.fetchall():
            patient_info = f"[{row['name']}]" if row['name'] else "[System]"
            print(f"  {row['timestamp']} {patient_info}: {row['message']}")


def view_alerts():
    """Evaluate alerts for every patient"""
    print_section("ALERTS")
    for record in get_all_patient_records():
        alerts = evaluate_alerts(record)
        print(f"  {record.patient.name} ({record.patient_id}): {len(alerts)} alerts")
        for alert in alerts:
            print(f"    [{alert.severity.value.upper()}] {alert.id}: {alert.message}")


def view_kpis():
    print_section("CLINIC KPIS")
    records = get_all_patient_records()
    kpis = compute_clinic_kpis(records)
    for name, value in vars(kpis).items():
        print(f"  {name:<24} {value}")
    print(f"  {'peritonitis_rate':<24} {compute_peritonitis_rate(records):.2f}")


def reset_database():
    """Drop the database file and recreate it with the demo patients"""
    if "--yes" not in sys.argv:
        print("Refusing to reset without --yes (all patient data would be deleted)")
        return
    DB_PATH.unlink()
    init_database()
    print(f"✓ {DB_PATH.name} recreated with demo patients")


COMMANDS = {
    "view": view_all_data,
    "alerts": view_alerts,
    "kpis": view_kpis,
    "reset": reset_database,
}


def main():
    if not DB_PATH.exists():
        print(f"✗ Database not found at: {DB_PATH}")
        print("  Run the Streamlit app first to create it.")
        return

    print(f"Database: {DB_PATH}")
    command = sys.argv[1] if len(sys.argv) > 1 else "view"
    if command not in COMMANDS:
        print(f"Unknown command: {command}")
        print(__doc__)
        return
    COMMANDS[command]()


if __name__ == "__main__":
    main()
