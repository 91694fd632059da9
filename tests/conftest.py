"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded, and pins the limiter settings
the HTTP tests rely on.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_RATE", "3 requests in 1 minute")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from fakes import FakeClock
from window_limiter.core.rate_limit import reset_rate_limiter


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _fresh_process_limiter():
    """Each test starts with empty process-wide counters."""

    reset_rate_limiter()
    yield
    reset_rate_limiter()
