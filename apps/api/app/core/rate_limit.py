"""Rate limiting configuration for the booking API."""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

# Shared storage (e.g. redis://) for multi-worker deployments; in-memory otherwise
STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")

BOOKING_LIMIT = f"{settings.RATE_LIMIT_BOOKING}/minute"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=STORAGE_URI,
    enabled=not IS_TESTING and settings.RATE_LIMIT_BOOKING > 0,
)
