"""Production startup configuration checks.

Run at application startup; prod-like deployments refuse to boot when a
check fails.
"""

import logging
from typing import List
from urllib.parse import urlparse

from agenthub.config import Settings

logger = logging.getLogger(__name__)

_MIN_PEPPER_LENGTH = 32


class ProductionConfigError(Exception):
    """Raised when production configuration fails validation."""
    pass


def validate_production_settings(settings: Settings) -> List[str]:
    """Validate production configuration requirements.

    Returns a list of error messages (empty if valid), so every violation
    is reported at once.
    """
    errors: List[str] = []

    # 1. API keys are hashed with the pepper; without it nothing can be issued
    pepper = settings.api_key_pepper.strip()
    if not pepper:
        errors.append("API_KEY_PEPPER must be set in production")
    elif len(pepper) < _MIN_PEPPER_LENGTH:
        errors.append(f"API_KEY_PEPPER must be at least {_MIN_PEPPER_LENGTH} characters")

    # 2. Canonical base URL must be https so handshake cookies are Secure
    if settings.public_base_url:
        parsed = urlparse(settings.public_base_url)
        if parsed.scheme != "https" or not parsed.hostname:
            errors.append(
                f"PUBLIC_BASE_URL must be an absolute https URL in production "
                f"(current: '{settings.public_base_url}')"
            )
    else:
        errors.append("PUBLIC_BASE_URL must be set in production")

    # 3. Throttling must stay on
    if settings.rate_limit_rpm <= 0:
        errors.append("RATE_LIMIT_RPM must be positive in production")

    if settings.debug:
        errors.append("DEBUG must be false in production")

    return errors


def run_startup_validations(settings: Settings) -> None:
    """Validate settings, raising in prod-like environments."""
    if not settings.is_prod_like:
        if not settings.api_key_pepper:
            logger.warning("API_KEY_PEPPER is not set; OAuth login will be unavailable")
        if not settings.oauth_configured:
            logger.warning("GitHub OAuth client id/secret not set; OAuth login will be unavailable")
        return

    errors = validate_production_settings(settings)
    if errors:
        for error in errors:
            logger.error(f"Startup validation failed: {error}")
        raise ProductionConfigError(
            "Production configuration validation failed:\n- " + "\n- ".join(errors)
        )
    logger.info("Production configuration validated")
