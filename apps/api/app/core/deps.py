"""FastAPI dependencies for database access, collaborators and cron auth."""

import hmac
from functools import lru_cache
from typing import Generator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import SessionLocal
from app.jobs.registry import TaskHandlerSpec, build_task_handlers
from app.services.integrations import Providers, build_providers


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_providers() -> Providers:
    """Process-wide provider clients. Tests override this dependency."""
    return build_providers()


def get_task_handlers(providers: Providers = Depends(get_providers)) -> dict[str, TaskHandlerSpec]:
    return dict(build_task_handlers(providers))


def verify_cron_secret(authorization: str | None = Header(None)) -> None:
    """
    Require `Authorization: Bearer <CRON_SECRET>` when a secret is configured.

    Raises:
        HTTPException 401: header missing or wrong
    """
    if not settings.CRON_SECRET:
        return
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
