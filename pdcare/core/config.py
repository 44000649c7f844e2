# config.py
# Configuration, clinical thresholds and logging setup

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file (for local development)
load_dotenv()


def _secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """Read a setting from Streamlit secrets first, then from the environment"""
    try:
        import streamlit as st
        value = st.secrets.get(name)
        if value:
            return str(value)
    except Exception:
        # Streamlit not available or no secrets file - use .env
        pass
    return os.getenv(name, default)


# OpenAI Configuration
OPENAI_API_KEY = _secret("OPENAI_API_KEY")
OPENAI_MODEL = _secret("OPENAI_MODEL", "gpt-4o")

# Alert notification (Resend email API + clinic WhatsApp line)
RESEND_API_KEY = _secret("RESEND_API_KEY")
RESEND_API_URL = "https://api.resend.com/emails"
ALERT_EMAIL_SENDER = _secret("ALERT_EMAIL_SENDER", "PD Clinic Alert <onboarding@resend.dev>")
CLINIC_ALERT_EMAIL = _secret("CLINIC_ALERT_EMAIL", "pd-clinic@example.org")
CLINIC_WHATSAPP_NUMBER = _secret("CLINIC_WHATSAPP_NUMBER", "")

# Storage
DB_PATH = Path(os.getenv("PDCARE_DB_PATH") or Path(__file__).parent.parent.parent / "pd_dashboard.db")

# PDF Export Configuration
CLINIC_NAME = _secret("CLINIC_NAME", "Peritoneal Dialysis Clinic")
PDF_HEADER_COLOR = "#0B5563"

LOG_LEVEL = os.getenv("PDCARE_LOG_LEVEL", "INFO").upper()

# Clinical alert thresholds (clinicians can tweak these in one place)
ALERT_THRESHOLDS = {
    "fever_celsius": 38.0,
    "high_systolic_bp": 180,
    "missed_log_days": 3,
    "urine_drop_fraction": 0.5,
    "weight_change_fraction": 0.10,
    "prescribed_daily_exchanges": 4,
}

# Free-text terms that raise the "concerning keywords" warning
CONCERNING_KEYWORDS = [
    "pain",
    "vomiting",
    "redness",
    "pus",
    "leakage",
    "outflow issue",
    "disturbance",
    "abdomen",
]

# PD log analytics windows
PD_ANALYTICS = {
    "missed_log_window_days": 30,
    "uf_window_days": 90,
    "uf_baseline_start_days": 90,
    "uf_baseline_end_days": 60,
    "uf_recent_days": 30,
    "uf_drop_fraction": 0.75,
    "uf_baseline_min_ml": 50,
}

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stream handler on the root logger"""
    root_logger = logging.getLogger()
    root_logger.setLevel(level or LOG_LEVEL)
    if any(getattr(h, "_pdcare", False) for h in root_logger.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler._pdcare = True
    root_logger.addHandler(handler)


# Validate that required environment variables are set
def validate_config():
    """Check if required configuration is present"""
    if not OPENAI_API_KEY or OPENAI_API_KEY == "your-openai-api-key-here":
        return False, "OPENAI_API_KEY not configured in .env file"
    if not RESEND_API_KEY:
        return True, "Configuration valid (RESEND_API_KEY missing: alert emails disabled)"
    return True, "Configuration valid"
