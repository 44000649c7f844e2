import logging

from pdcare.core import config


def test_validate_config_requires_openai_key(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", None)

    ok, message = config.validate_config()

    assert not ok
    assert "OPENAI_API_KEY" in message


def test_validate_config_notes_disabled_email(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(config, "RESEND_API_KEY", None)

    ok, message = config.validate_config()

    assert ok
    assert "alert emails disabled" in message


def test_configure_logging_installs_one_handler():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        config.configure_logging("DEBUG")
        config.configure_logging("DEBUG")
        added = [h for h in root.handlers if h not in before]
        assert len(added) <= 1
        assert sum(1 for h in root.handlers if getattr(h, "_pdcare", False)) == 1
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
        root.setLevel(level)
