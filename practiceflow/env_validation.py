import os
import logging
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

# Mandatory environment variables for production
REQUIRED_PRODUCTION_ENV_VARS = [
    "SECRET_KEY",
    "DATABASE_URL",
]

def validate_env():
    """
    Validate critical environment variables for Django settings.
    Runs once per process; subsequent calls are idempotent.
    """
    is_production = os.getenv("PRODUCTION", "false").lower() == "true"

    secret_key = os.getenv("SECRET_KEY")
    if not secret_key:
        if is_production:
            raise ImproperlyConfigured("CRITICAL: SECRET_KEY is required in production.")
        else:
            logger.warning("SECRET_KEY not set, using insecure default for development.")

    if is_production:
        missing = [var for var in REQUIRED_PRODUCTION_ENV_VARS if not os.getenv(var)]
        if missing:
            error_msg = f"CRITICAL: Missing required environment variables in production: {', '.join(missing)}"
            logger.critical(error_msg)
            raise ImproperlyConfigured(error_msg)

        if secret_key and (secret_key.startswith("django-insecure") or len(secret_key) < 50):
            error_msg = "CRITICAL: SECRET_KEY must be a long, secure string in production"
            logger.critical(error_msg)
            raise ImproperlyConfigured(error_msg)

    tax_rate = os.getenv("WORKS_DEFAULT_TAX_RATE")
    if tax_rate:
        try:
            rate = Decimal(tax_rate)
        except InvalidOperation:
            raise ImproperlyConfigured(f"WORKS_DEFAULT_TAX_RATE is not a number: {tax_rate!r}")
        if rate < 0 or rate > 100:
            raise ImproperlyConfigured("WORKS_DEFAULT_TAX_RATE must be between 0 and 100")

    logger.info("Environment validation passed successfully")
