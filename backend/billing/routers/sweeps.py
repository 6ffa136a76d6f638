from collections.abc import Awaitable, Callable
from uuid import UUID

from arq.jobs import Job
from fastapi import APIRouter, Depends, HTTPException

from billing.core.auth import get_current_organization
from billing.tasks import enqueue_overdue_sweep, enqueue_recurring_sweep, enqueue_reminder_sweep

router = APIRouter()

SWEEPS: dict[str, Callable[[], Awaitable[Job | None]]] = {
    "recurring": enqueue_recurring_sweep,
    "reminders": enqueue_reminder_sweep,
    "overdue": enqueue_overdue_sweep,
}


@router.post(
    "/{sweep}",
    status_code=202,
    summary="Enqueue sweep",
    description=(
        "Run the recurring, reminder or overdue sweep now instead of waiting for "
        "its cron slot. A sweep that is already queued is not queued twice. "
        "Sweeps cover every organization, so any valid API key may trigger them."
    ),
    responses={
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Unknown sweep"},
    },
)
async def trigger_sweep(
    sweep: str,
    _organization_id: UUID = Depends(get_current_organization),
) -> dict[str, str | None]:
    enqueue = SWEEPS.get(sweep)
    if enqueue is None:
        raise HTTPException(status_code=404, detail=f"Unknown sweep: {sweep}")
    job = await enqueue()
    if job is None:
        return {"job_id": None, "status": "already_queued"}
    return {"job_id": job.job_id, "status": "queued"}
