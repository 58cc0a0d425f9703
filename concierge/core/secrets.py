"""
Provider credential resolver.

Channel credentials never live in the tenant-editable channel config blob. They
are read from process configuration:

1. Environment variables (CONCIERGE_SECRET_{TENANT}_{NAME})
2. secrets/ directory (one file per secret)

Example:
    resolve_secret("kona-surf-lodge", "twilio_auth_token")
    -> looks for env CONCIERGE_SECRET_KONA_SURF_LODGE_TWILIO_AUTH_TOKEN
    -> falls back to secrets/kona-surf-lodge/twilio_auth_token
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# Keys that must be supplied as secrets, never through the channel config API.
SECRET_CONFIG_KEYS = frozenset(
    {"auth_token", "authToken", "access_token", "accessToken", "api_key", "apiKey", "app_secret"}
)


def resolve_secret(tenant_slug: str, secret_name: str) -> str | None:
    """
    Resolve a secret by name for a specific tenant.

    Returns:
        Secret value or None if not found.
    """
    env_key = f"CONCIERGE_SECRET_{_slugify(tenant_slug)}_{_slugify(secret_name)}"
    value = os.environ.get(env_key)
    if value:
        return value

    secret_file = Path("secrets") / tenant_slug / secret_name
    if secret_file.exists():
        return secret_file.read_text(encoding="utf-8").strip()

    logger.warning("Secret not found: %s/%s", tenant_slug, secret_name)
    return None


def _slugify(s: str) -> str:
    """Convert slug to env-safe format: kona-surf-lodge -> KONA_SURF_LODGE."""
    return s.replace("-", "_").upper()


def mask_value(value: str) -> str:
    if not value or len(value) < 8:
        return "****"
    return value[:4] + "****" + value[-4:]


def mask_config(config: dict | None) -> dict:
    """Copy of a channel config blob with credential-like values masked."""
    masked = dict(config or {})
    for key, value in masked.items():
        if (key in SECRET_CONFIG_KEYS or key == "webhook_verify_token") and isinstance(value, str):
            masked[key] = mask_value(value)
    return masked
