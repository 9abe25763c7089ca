"""
Process-level configuration: environment settings, logging, Sentry.

Settings are read from the environment (and a local .env file via
python-dotenv) each time get_settings() is called, so tests can patch
os.environ freely.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import requests
from dotenv import load_dotenv

from collaborators import RoutingError
from directions_http import DirectionsClient

logger = logging.getLogger(__name__)

load_dotenv()


@dataclass(frozen=True)
class Settings:
    google_maps_api_key: str = ""
    directions_base_url: Optional[str] = None
    directions_region: Optional[str] = None
    directions_timeout: float = DirectionsClient.DEFAULT_TIMEOUT
    log_level: str = "INFO"
    sentry_dsn: Optional[str] = None
    sentry_environment: str = "production"


def get_settings() -> Settings:
    timeout_raw = os.environ.get("DIRECTIONS_TIMEOUT", "")
    try:
        timeout = float(timeout_raw) if timeout_raw else DirectionsClient.DEFAULT_TIMEOUT
    except ValueError:
        raise ValueError(f"DIRECTIONS_TIMEOUT must be a number, got {timeout_raw!r}")

    return Settings(
        google_maps_api_key=os.environ.get("GOOGLE_MAPS_API_KEY", ""),
        directions_base_url=os.environ.get("DIRECTIONS_BASE_URL") or None,
        directions_region=os.environ.get("DIRECTIONS_REGION") or None,
        directions_timeout=timeout,
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        sentry_dsn=os.environ.get("SENTRY_DSN") or None,
        sentry_environment=os.environ.get("SENTRY_ENVIRONMENT", "production"),
    )


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Sentry error tracking, gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------

def _sentry_before_send(event, hint):
    """Demote expected routing failures to breadcrumbs; only unexpected errors become events."""
    import sentry_sdk

    exc_info = hint.get("exc_info")
    if exc_info:
        exc_type, exc_value, _ = exc_info
        if exc_type is not None and issubclass(
            exc_type, (RoutingError, requests.exceptions.RequestException)
        ):
            sentry_sdk.add_breadcrumb(
                category="routing",
                message=str(exc_value) if exc_value else exc_type.__name__,
                level="warning",
            )
            return None
    return event


def init_error_tracking(settings: Optional[Settings] = None) -> bool:
    """Initialise Sentry if a DSN is configured.  Returns True when enabled."""
    settings = settings or get_settings()
    if not settings.sentry_dsn:
        return False

    import sentry_sdk

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=0.0,
        environment=settings.sentry_environment,
        before_send=_sentry_before_send,
    )
    logger.info("Sentry error tracking enabled (environment=%s)", settings.sentry_environment)
    return True


def build_directions_client(settings: Optional[Settings] = None) -> DirectionsClient:
    """DirectionsClient from settings.  Raises ValueError without an API key."""
    settings = settings or get_settings()
    if not settings.google_maps_api_key:
        raise ValueError("GOOGLE_MAPS_API_KEY is not configured")
    return DirectionsClient(
        api_key=settings.google_maps_api_key,
        base_url=settings.directions_base_url,
        region=settings.directions_region,
        timeout=settings.directions_timeout,
    )
