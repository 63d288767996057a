"""Shared test fixtures for the vibe_devops test suite."""

import sys

import pytest
import structlog


@pytest.fixture(autouse=True)
def stable_log_sink(monkeypatch):
    """Keep structlog off streams that CliRunner closes after each invoke.

    ``configure_logging`` binds the current ``sys.stderr`` and caches loggers
    on first use, so module-level loggers touched inside a CLI test would keep
    writing to a closed stream afterwards.
    """
    real_configure = structlog.configure

    def configure(**kwargs):
        kwargs["logger_factory"] = structlog.PrintLoggerFactory(file=sys.__stderr__)
        kwargs["cache_logger_on_first_use"] = False
        real_configure(**kwargs)

    structlog.reset_defaults()
    monkeypatch.setattr(structlog, "configure", configure)
    yield
    structlog.reset_defaults()
