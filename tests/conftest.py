"""Shared fixtures for the routing core test suite.

Keeps Sentry and the real Directions API out of every test, resets the
thread-local trace between tests, and provides the common rider profiles.
"""

import os

import pytest

# Unset BEFORE config is imported so no test reports to Sentry or calls Google
os.environ.pop("SENTRY_DSN", None)
os.environ.pop("GOOGLE_MAPS_API_KEY", None)

from models import MobilityProfile, MobilityType  # noqa: E402
from route_trace import clear_trace  # noqa: E402


@pytest.fixture(autouse=True)
def _no_sentry(monkeypatch):
    monkeypatch.delenv("SENTRY_DSN", raising=False)


@pytest.fixture(autouse=True)
def _clean_trace():
    clear_trace()
    yield
    clear_trace()


@pytest.fixture
def wheelchair():
    return MobilityProfile.for_type(MobilityType.WHEELCHAIR)


@pytest.fixture
def walker():
    return MobilityProfile.for_type(MobilityType.WALKER)


@pytest.fixture
def pedestrian():
    return MobilityProfile.for_type(MobilityType.NONE)
