import logging

import pytest
import requests

from conftest import make_patient

from pdcare.core.models import PDEvent
from pdcare.services import notifications
from pdcare.services.notifications import DATA_UPDATED, AlertDispatcher, EventBus, NotificationError


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def cloudy_event():
    return PDEvent("E1", "2024-06-15T08:00:00", "Dextrose 2.5%", 2000, 1900, is_effluent_cloudy=True)


def patient():
    return make_patient("P1", first_name="Fred", last_name="Mendes", contact_phone="+1 555 0102")


def test_bus_delivers_and_unsubscribes():
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe(DATA_UPDATED, received.append)

    assert bus.publish(DATA_UPDATED, {"patient_id": "P1"}) == 1
    unsubscribe()
    unsubscribe()
    assert bus.publish(DATA_UPDATED) == 0

    assert received == [{"patient_id": "P1", "type": DATA_UPDATED}]
    assert bus.subscriber_count(DATA_UPDATED) == 0


def test_bus_isolates_failing_subscribers(caplog):
    bus = EventBus()
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    bus.subscribe(DATA_UPDATED, broken)
    bus.subscribe(DATA_UPDATED, received.append)

    with caplog.at_level(logging.ERROR):
        delivered = bus.publish(DATA_UPDATED)

    assert delivered == 1
    assert len(received) == 1
    assert "boom" in caplog.text


def test_cloudy_alert_posts_email_and_simulates_whatsapp(monkeypatch, caplog):
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        return FakeResponse()

    monkeypatch.setattr(notifications.requests, "post", fake_post)
    dispatcher = AlertDispatcher("re_test_key", "clinic@example.org", "9665183839")

    with caplog.at_level(logging.INFO):
        status = dispatcher.send_cloudy_fluid_alert(patient(), cloudy_event())

    assert status == {"email": "sent", "whatsapp": "simulated"}
    assert len(calls) == 1
    assert calls[0]["headers"]["Authorization"] == "Bearer re_test_key"
    assert calls[0]["json"]["to"] == ["clinic@example.org"]
    assert calls[0]["json"]["subject"] == "Critical Alert: Cloudy PD Fluid for patient Fred Mendes"
    assert "P1" in calls[0]["json"]["html"]
    assert "Suspicion of PD Peritonitis. Patient Name: Fred Mendes, Mobile: +1 555 0102" in caplog.text


def test_missing_api_key_skips_email(monkeypatch, caplog):
    def fail_post(*args, **kwargs):
        raise AssertionError("email must not be sent")

    monkeypatch.setattr(notifications.requests, "post", fail_post)
    dispatcher = AlertDispatcher(resend_api_key="", clinic_email="clinic@example.org")

    with caplog.at_level(logging.WARNING):
        status = dispatcher.send_cloudy_fluid_alert(patient(), cloudy_event())

    assert status["email"] == "skipped"
    assert "RESEND_API_KEY is not set" in caplog.text


def test_http_failure_raises_notification_error(monkeypatch):
    monkeypatch.setattr(notifications.requests, "post", lambda *a, **k: FakeResponse(500))
    dispatcher = AlertDispatcher("re_test_key", "clinic@example.org")

    with pytest.raises(NotificationError):
        dispatcher.send_cloudy_fluid_alert(patient(), cloudy_event())


def test_connection_error_raises_notification_error(monkeypatch):
    def unreachable(*args, **kwargs):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr(notifications.requests, "post", unreachable)

    with pytest.raises(NotificationError, match="no route"):
        AlertDispatcher("re_test_key").send_email(patient(), cloudy_event())
