import logging

import pytest

from flowcanvas.event_bus import EventBus
from flowcanvas.exceptions import PortFull, TransportError
from flowcanvas.settings import Settings
from flowcanvas.utilities.logging import configure_logging, get_logger


def test_defaults(isolated_env):
    settings = Settings()
    assert settings.api_base_url == "http://localhost:8000"
    assert settings.execute_stream_path == "/api/workflow/execute/stream"
    assert settings.streaming is True


def test_environment_overrides(isolated_env, monkeypatch):
    monkeypatch.setenv("FLOWCANVAS_API_BASE_URL", "http://executor:9000")
    monkeypatch.setenv("FLOWCANVAS_STREAMING", "false")
    monkeypatch.setenv("FLOWCANVAS_EXECUTION_IDLE_TIMEOUT", "5")
    settings = Settings()
    assert settings.api_base_url == "http://executor:9000"
    assert settings.streaming is False
    assert settings.execution_idle_timeout == 5.0


def test_dotenv_file(isolated_env, temp_work_dir):
    (temp_work_dir / ".env").write_text("FLOWCANVAS_LOG_LEVEL=DEBUG\n")
    assert Settings().log_level == "DEBUG"


def test_configure_logging():
    configure_logging("debug")
    root = logging.getLogger("FlowCanvas")
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert get_logger("builder").parent is root

    configure_logging(logging.WARNING)
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1

    with pytest.raises(ValueError):
        configure_logging("LOUD")

    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


def test_bus_skips_failing_subscriber(caplog):
    bus = EventBus()
    received = []

    def broken(event_type, payload):
        raise RuntimeError("subscriber bug")

    bus.subscribe("ping", broken)
    bus.subscribe("ping", lambda event_type, payload: received.append(payload))
    bus.publish("ping", {"n": 1})

    assert received == [{"n": 1}]
    assert "EventBus callback error for 'ping'" in caplog.text

    bus.unsubscribe("ping", broken)
    bus.publish("ping", {"n": 2})
    assert received == [{"n": 1}, {"n": 2}]


def test_error_to_dict():
    error = PortFull("Input 'text' already has a connection.", details={"target": "B:text"})
    assert error.to_dict() == {
        "error": "PortFull",
        "code": "flowcanvas.connection.port_full",
        "message": "Input 'text' already has a connection.",
        "details": {"target": "B:text"},
    }
    wrapped = TransportError.from_exception(OSError("reset"), details={"path": "/x"})
    assert wrapped.message == "reset"
    assert wrapped.details["path"] == "/x"
    assert "original_exception" in wrapped.details
