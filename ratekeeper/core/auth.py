"""API key checks.

Keys are validated against comma-separated lists from the environment:
``APP_ADMIN_API_KEYS`` guards the stats/reset endpoints, and
``APP_SERVICE_API_KEYS`` (or an admin key) marks a caller of the decision
endpoint as a trusted service that may choose the key and report outcomes.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Header, Request

from ratekeeper.adapters.rate_limit.keys import fingerprint_key
from ratekeeper.core.config import AppSettings, settings
from ratekeeper.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> sorted(parse_api_keys("key1, key2 ,key1"))
        ['key1', 'key2']
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def _matches_any(provided_key: str, valid_keys: set[str]) -> bool:
    return any(hmac.compare_digest(provided_key, key) for key in valid_keys)


def validate_admin_key(provided_key: str | None, app_settings: AppSettings | None = None) -> None:
    """Validate an admin key against configured keys.

    Args:
        provided_key: Value of the ``X-API-Key`` header.
        app_settings: Settings of the running app; defaults to the environment.

    Raises:
        AuthenticationAppError: If the key is missing or unknown, or no keys
            are configured while the check is required.
    """
    cfg = app_settings or settings.app
    if not cfg.admin_key_required:
        return

    valid_keys = parse_api_keys(cfg.admin_api_keys)
    if not valid_keys:
        logger.error("admin_auth.failed", extra={"reason": "admin_keys_not_configured"})
        raise AuthenticationAppError(
            code="admin_keys_not_configured",
            message="Admin authentication is enabled but no admin keys are configured",
            details={"hint": "Set APP_ADMIN_API_KEYS or disable with APP_ADMIN_KEY_REQUIRED=false"},
        )

    if not provided_key:
        logger.warning("admin_auth.failed", extra={"reason": "missing_key"})
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    if not _matches_any(provided_key, valid_keys):
        logger.warning(
            "admin_auth.failed",
            extra={"reason": "invalid_key", "key_hash": fingerprint_key(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


def is_trusted_service(provided_key: str | None, app_settings: AppSettings | None = None) -> bool:
    """Whether ``provided_key`` is a configured service or admin key.

    Never raises: an unknown key simply makes the caller untrusted.
    """
    if not provided_key:
        return False
    cfg = app_settings or settings.app
    valid_keys = parse_api_keys(cfg.service_api_keys) | parse_api_keys(cfg.admin_api_keys)
    return _matches_any(provided_key, valid_keys)


async def verify_admin_key(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding admin routes with ``X-API-Key``."""
    validate_admin_key(x_api_key, request.app.state.settings.app)
