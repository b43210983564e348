"""
Sentry SDK configuration with privacy-compliant settings.

Implements:
- Environment-based initialization
- Scrubbing of emails, IPs and token material before events leave the process
- Loguru and SQLAlchemy integrations
"""

import os
import re
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.loguru import LoguruIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.types import Event, Hint

# Keys whose values must never reach Sentry
_SENSITIVE_KEYS = {
    "password",
    "hashed_password",
    "session_token",
    "refresh_token",
    "token",
    "token_hash",
    "secret",
    "encrypted_secret",
    "backup_codes",
    "code",
}

_EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: "[Filtered]" if str(k).lower() in _SENSITIVE_KEYS else _scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_scrub(v) for v in value]
    if isinstance(value, str):
        return _EMAIL_RE.sub("[email]", value)
    return value


def _before_send(event: Event, hint: Hint) -> Event | None:
    """
    Scrub PII and credentials before sending to Sentry.

    Keeps only the user id for traceability; strips emails, IP addresses
    and any token, secret or code carried in extras or breadcrumbs.
    """
    user = event.get("user")
    if user:
        user.pop("email", None)
        user.pop("username", None)
        if "ip_address" in user:
            user["ip_address"] = "{{auto}}"

    if "extra" in event:
        event["extra"] = _scrub(event["extra"])

    breadcrumbs = event.get("breadcrumbs")
    if isinstance(breadcrumbs, dict) and "values" in breadcrumbs:
        for crumb in breadcrumbs["values"]:
            if "data" in crumb:
                crumb["data"] = _scrub(crumb["data"])
            if isinstance(crumb.get("message"), str):
                crumb["message"] = _scrub(crumb["message"])

    return event


def init_sentry() -> None:
    """
    Initialize Sentry SDK.

    Sentry is disabled if the SENTRY_DSN environment variable is not set.
    """
    dsn = os.getenv("SENTRY_DSN")

    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        release=os.getenv("SENTRY_RELEASE", "unknown"),
        send_default_pii=False,
        integrations=[
            SqlalchemyIntegration(),
            LoguruIntegration(),
        ],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        sample_rate=1.0,
        before_send=_before_send,
        attach_stacktrace=True,
        max_breadcrumbs=50,
        ignore_errors=[
            KeyboardInterrupt,
            SystemExit,
        ],
    )
