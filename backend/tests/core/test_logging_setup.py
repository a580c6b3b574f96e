"""Tests for logging setup and site context binding."""

import logging

import pytest
import structlog
from asgi_correlation_id.context import correlation_id

from sitetrack.core.logging import (
    QUIET_LOGGERS,
    add_correlation_id,
    configure_logging,
    site_context,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def clean_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


def test_site_context_binds_and_clears():
    with site_context("site-1", phase_id="fondation", step_id=None):
        assert structlog.contextvars.get_contextvars() == {"site_id": "site-1", "phase_id": "fondation"}

    assert structlog.contextvars.get_contextvars() == {}


def test_nested_site_context_restores_outer():
    with site_context("site-1"):
        with site_context("site-1", phase_id="elevation"):
            assert structlog.contextvars.get_contextvars()["phase_id"] == "elevation"
        assert structlog.contextvars.get_contextvars() == {"site_id": "site-1"}


def test_site_context_cleared_on_error():
    with pytest.raises(RuntimeError):
        with site_context("site-1"):
            raise RuntimeError("boom")

    assert structlog.contextvars.get_contextvars() == {}


def test_correlation_id_added_when_in_request():
    token = correlation_id.set("req-42")
    try:
        assert add_correlation_id(None, "info", {"event": "x"}) == {"event": "x", "correlation_id": "req-42"}
    finally:
        correlation_id.reset(token)


def test_correlation_id_absent_outside_request():
    assert add_correlation_id(None, "info", {"event": "x"}) == {"event": "x"}


def test_configure_logging_levels():
    configure_logging(debug=True, log_level="warning")

    assert logging.getLogger().level == logging.WARNING
    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING

    configure_logging(debug=False)
    assert logging.getLogger().level == logging.INFO
