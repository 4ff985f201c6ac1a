"""
Internal endpoints for scheduled/cron operations.

Protected by `Authorization: Bearer <CRON_SECRET>` when CRON_SECRET is set.
Call from an external cron (Vercel/Render/GH Actions).
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_task_handlers, verify_cron_secret
from app.schemas.booking import RunTasksResponse
from app.worker import run_task_queue

router = APIRouter(prefix="/internal/cron", tags=["internal"])


@router.get(
    "/run-tasks",
    response_model=RunTasksResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def run_tasks(
    db: Session = Depends(get_db),
    handlers=Depends(get_task_handlers),
):
    """Run one task queue invocation."""
    result = await run_task_queue(db, handlers)
    return RunTasksResponse(success=True, **result.as_dict())
