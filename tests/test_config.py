"""Tests for config.py — settings, Sentry filtering, client construction."""

from unittest.mock import patch

import pytest
import requests

from collaborators import RoutingQuotaError
from config import (
    Settings,
    _sentry_before_send,
    build_directions_client,
    get_settings,
    init_error_tracking,
)


class TestGetSettings:
    def test_defaults(self, monkeypatch):
        for name in ("GOOGLE_MAPS_API_KEY", "DIRECTIONS_TIMEOUT", "LOG_LEVEL", "DIRECTIONS_REGION"):
            monkeypatch.delenv(name, raising=False)
        settings = get_settings()
        assert settings.google_maps_api_key == ""
        assert settings.directions_timeout == 10
        assert settings.log_level == "INFO"
        assert settings.sentry_dsn is None

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "abc")
        monkeypatch.setenv("DIRECTIONS_TIMEOUT", "4.5")
        monkeypatch.setenv("DIRECTIONS_REGION", "ph")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        settings = get_settings()
        assert settings.google_maps_api_key == "abc"
        assert settings.directions_timeout == 4.5
        assert settings.directions_region == "ph"
        assert settings.log_level == "DEBUG"

    def test_bad_timeout_rejected(self, monkeypatch):
        monkeypatch.setenv("DIRECTIONS_TIMEOUT", "soon")
        with pytest.raises(ValueError, match="DIRECTIONS_TIMEOUT"):
            get_settings()


class TestBuildDirectionsClient:
    def test_requires_key(self):
        with pytest.raises(ValueError):
            build_directions_client(Settings())

    def test_passes_settings_through(self):
        client = build_directions_client(Settings(google_maps_api_key="k", directions_timeout=3,
                                                  directions_region="ph"))
        assert client.api_key == "k"
        assert client.timeout == 3
        assert client.region == "ph"


class TestErrorTracking:
    def test_disabled_without_dsn(self):
        assert init_error_tracking(Settings()) is False

    def test_enabled_with_dsn(self):
        with patch("sentry_sdk.init") as sentry_init:
            assert init_error_tracking(Settings(sentry_dsn="https://key@sentry.example/1")) is True
        assert sentry_init.call_args[1]["before_send"] is _sentry_before_send

    def test_routing_errors_become_breadcrumbs(self):
        err = RoutingQuotaError("OVER_QUERY_LIMIT")
        with patch("sentry_sdk.add_breadcrumb") as crumb:
            result = _sentry_before_send({"event_id": "1"}, {"exc_info": (type(err), err, None)})
        assert result is None
        crumb.assert_called_once()

    def test_network_errors_become_breadcrumbs(self):
        err = requests.exceptions.Timeout("slow")
        with patch("sentry_sdk.add_breadcrumb"):
            assert _sentry_before_send({}, {"exc_info": (type(err), err, None)}) is None

    def test_unexpected_errors_pass_through(self):
        err = KeyError("boom")
        event = {"event_id": "2"}
        assert _sentry_before_send(event, {"exc_info": (type(err), err, None)}) is event
        assert _sentry_before_send(event, {}) is event
