# notifications.py
# In-process data-change events and critical alert delivery (email + WhatsApp)
import html
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional

import requests

from pdcare.core.config import (
    ALERT_EMAIL_SENDER, CLINIC_ALERT_EMAIL, CLINIC_WHATSAPP_NUMBER, RESEND_API_KEY, RESEND_API_URL
)
from pdcare.core.models import Patient, PDEvent

logger = logging.getLogger(__name__)

DATA_UPDATED = "DATA_UPDATED"

Subscriber = Callable[[dict], None]


class NotificationError(Exception):
    """Raised when an alert could not be delivered"""
    pass


class EventBus:
    """Publish/subscribe channel telling open views that patient data changed"""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: str, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again"""
        self._subscribers[event_type].append(callback)

        def unsubscribe():
            if callback in self._subscribers[event_type]:
                self._subscribers[event_type].remove(callback)

        return unsubscribe

    def publish(self, event_type: str, payload: Optional[dict] = None) -> int:
        """Deliver an event to every subscriber; returns how many were called"""
        payload = dict(payload or {}, type=event_type)
        delivered = 0
        for callback in list(self._subscribers.get(event_type, [])):
            try:
                callback(payload)
                delivered += 1
            except Exception as e:
                logger.error("Subscriber for %s failed: %s", event_type, e)
        return delivered

    def subscriber_count(self, event_type: str) -> int:
        return len(self._subscribers.get(event_type, []))


def publish_data_update(bus: Optional[EventBus], patient_id: Optional[str] = None):
    if bus is not None:
        bus.publish(DATA_UPDATED, {"patient_id": patient_id})


class AlertDispatcher:
    """Sends the clinic a critical alert when a patient reports cloudy effluent"""

    def __init__(
        self,
        resend_api_key: Optional[str] = None,
        clinic_email: Optional[str] = None,
        whatsapp_number: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.resend_api_key = resend_api_key if resend_api_key is not None else RESEND_API_KEY
        self.clinic_email = clinic_email or CLINIC_ALERT_EMAIL
        self.whatsapp_number = whatsapp_number if whatsapp_number is not None else CLINIC_WHATSAPP_NUMBER
        self.sender = sender or ALERT_EMAIL_SENDER
        self.timeout = timeout

    @staticmethod
    def email_subject(patient: Patient) -> str:
        return f"Critical Alert: Cloudy PD Fluid for patient {patient.name}"

    @staticmethod
    def whatsapp_body(patient: Patient) -> str:
        return f"Suspicion of PD Peritonitis. Patient Name: {patient.name}, Mobile: {patient.contact_phone or ''}"

    def _email_html(self, patient: Patient, event: PDEvent) -> str:
        rows = [
            ("Patient Name", patient.name),
            ("Patient ID", patient.patient_id),
            ("Reported At", event.exchange_at),
            ("Physician", patient.physician),
            ("Exchange", f"{event.dialysate_type}, {event.fill_volume_ml} mL fill / {event.drain_volume_ml} mL drain"),
        ]
        body = "".join(
            f"<tr><td><b>{html.escape(label)}</b></td><td>{html.escape(str(value))}</td></tr>"
            for label, value in rows
        )
        return (
            "<h2>Cloudy PD fluid reported</h2>"
            "<p>This is a potential sign of peritonitis and requires immediate attention.</p>"
            f"<table>{body}</table>"
        )

    def send_email(self, patient: Patient, event: PDEvent) -> bool:
        """POST the alert to the Resend API; False when no API key is configured"""
        if not self.resend_api_key:
            logger.warning("RESEND_API_KEY is not set. Skipping alert email for %s", patient.patient_id)
            return False

        try:
            resp = requests.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.resend_api_key}"},
                json={
                    "from": self.sender,
                    "to": [self.clinic_email],
                    "subject": self.email_subject(patient),
                    "html": self._email_html(patient, event),
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Failed to send alert email for %s: %s", patient.patient_id, e)
            raise NotificationError(f"Failed to send alert email: {e}") from e

        logger.info("Alert email sent to %s for patient %s", self.clinic_email, patient.patient_id)
        return True

    def send_whatsapp(self, patient: Patient) -> str:
        # No WhatsApp provider is wired in; the message is logged instead
        body = self.whatsapp_body(patient)
        logger.info("Simulated WhatsApp message to %s: %s", self.whatsapp_number or "<unset>", body)
        return body

    def send_cloudy_fluid_alert(self, patient: Patient, event: PDEvent) -> Dict[str, str]:
        """
        Notify the clinic about a cloudy PD exchange

        Returns:
            Status per channel: {"email": "sent"|"skipped", "whatsapp": "simulated"}

        Raises:
            NotificationError: when the email API rejects the request or is unreachable
        """
        emailed = self.send_email(patient, event)
        self.send_whatsapp(patient)
        return {
            "email": "sent" if emailed else "skipped",
            "whatsapp": "simulated",
        }
