"""Tests for structured logging setup."""

import structlog

from nengine.observability.logging import bind_session, setup_logging


def teardown_function():
    structlog.contextvars.clear_contextvars()


def test_service_name_is_bound():
    setup_logging("DEBUG", "json", service_name="nengine-test")
    assert structlog.contextvars.get_contextvars()["service"] == "nengine-test"


def test_session_binding():
    bind_session("sunken-keep", "main")
    context = structlog.contextvars.get_contextvars()
    assert context["game_id"] == "sunken-keep"
    assert context["branch"] == "main"
