from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends

from app.core.deps import (
    get_current_provider,
    get_digitalrx_client,
    get_notification_service,
    get_provider_or_internal,
    get_service,
    get_session_factory,
)
from app.models.user import User
from app.schemas.prescription import (
    BatchStatusRequest,
    BatchStatusResponse,
    MarkPaidResponse,
    StatusCheckResponse,
    SubmitToPharmacyResponse,
)
from app.services.payment_service import PaymentService
from app.services.pharmacy_submission_service import PharmacySubmissionService
from app.services.prescription_status_service import PrescriptionStatusService
from app.services.side_effects import drain_outbox

router = APIRouter(prefix="/prescriptions", tags=["Prescriptions"])


# BATCH STATUS
@router.post("/status-batch", response_model=BatchStatusResponse)
async def batch_status(
    body: BatchStatusRequest,
    current_user: User = Depends(get_current_provider),
    service: PrescriptionStatusService = Depends(get_service(PrescriptionStatusService)),
):
    """
    Refreshes DigitalRx status for the given prescriptions, or for all of
    the provider's submitted prescriptions.
    """
    return await service.check_many(
        user=current_user,
        prescription_ids=body.prescription_ids,
    )


# SINGLE STATUS
@router.post("/{prescription_id}/check-status", response_model=StatusCheckResponse)
async def check_status(
    prescription_id: UUID,
    current_user: User = Depends(get_current_provider),
    service: PrescriptionStatusService = Depends(get_service(PrescriptionStatusService)),
):
    return await service.check_status(prescription_id=prescription_id, user=current_user)


# SUBMIT TO PHARMACY
@router.post("/{prescription_id}/submit-to-pharmacy", response_model=SubmitToPharmacyResponse)
async def submit_to_pharmacy(
    prescription_id: UUID,
    caller: User | None = Depends(get_provider_or_internal),
    service: PharmacySubmissionService = Depends(get_service(PharmacySubmissionService)),
):
    return await service.submit(
        prescription_id=prescription_id,
        user_id=caller.id if caller else None,
    )


# MANUAL PAYMENT
@router.post("/{prescription_id}/mark-paid", response_model=MarkPaidResponse)
async def mark_paid(
    prescription_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_provider),
    service: PaymentService = Depends(get_service(PaymentService)),
    session_factory=Depends(get_session_factory),
    digitalrx=Depends(get_digitalrx_client),
    notification_service=Depends(get_notification_service),
):
    """
    Records an off-platform payment and sends the prescription to the
    pharmacy. A failed submission still returns success, with a warning,
    and is retried from the outbox.
    """
    result = await service.mark_paid(prescription_id=prescription_id, user=current_user)

    if result.get("warning"):
        background_tasks.add_task(
            drain_outbox,
            session_factory,
            digitalrx=digitalrx,
            notification_service=notification_service,
        )

    return result
