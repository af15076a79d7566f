from fastapi import APIRouter, BackgroundTasks, Depends

from app.core.deps import (
    get_current_admin,
    get_digitalrx_client,
    get_notification_service,
    get_service,
    get_session_factory,
)
from app.schemas.refill import RefillRunResponse
from app.services.refill_service import RefillService
from app.services.side_effects import drain_outbox

router = APIRouter(
    prefix="/admin/refills",
    tags=["Admin Refills"],
    dependencies=[Depends(get_current_admin)],
)


# RUN REFILL CHECK NOW
@router.post("/run", response_model=RefillRunResponse)
async def run_refill_check(
    background_tasks: BackgroundTasks,
    service: RefillService = Depends(get_service(RefillService)),
    session_factory=Depends(get_session_factory),
    digitalrx=Depends(get_digitalrx_client),
    notification_service=Depends(get_notification_service),
):
    """
    Same job the scheduler runs daily at 08:00 UTC.
    """
    result = await service.run()

    if result["processed"]:
        background_tasks.add_task(
            drain_outbox,
            session_factory,
            digitalrx=digitalrx,
            notification_service=notification_service,
        )

    return result
