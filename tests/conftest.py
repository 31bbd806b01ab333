"""Pytest configuration and fixtures shared across all test modules.

This file is loaded by pytest before any test module, so the environment
below is in place before ``ratekeeper.core.config`` builds its settings.
"""

import os
from unittest.mock import Mock

import pytest

# CRITICAL: Set this before any imports that might load settings
# This prevents loading the .env file during tests
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_ADMIN_KEY_REQUIRED", "true")
os.environ.setdefault("APP_ADMIN_API_KEYS", "test-admin-key-123,test-admin-key-456")
os.environ.setdefault("APP_SERVICE_API_KEYS", "test-service-key-789")
# No background sweep threads unless a test asks for one
os.environ.setdefault("APP_SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("APP_RATE_LIMIT_BACKEND", "memory")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-API-Key": "test-admin-key-123"}


@pytest.fixture
def service_headers() -> dict[str, str]:
    return {"X-API-Key": "test-service-key-789"}


@pytest.fixture
def clock() -> Mock:
    """Deterministic epoch-ms clock; set ``clock.return_value`` to move time."""
    return Mock(return_value=0)
