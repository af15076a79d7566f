import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from app.core.deps import (
    get_digitalrx_client,
    get_notification_service,
    get_redis,
    get_service,
    get_session_factory,
    verify_digitalrx_webhook,
)
from app.core.exceptions import PaymentValidationError
from app.core.limiter import limiter
from app.schemas.webhook import DigitalRxWebhookRequest, DigitalRxWebhookResponse, WebhookAck
from app.services.prescription_status_service import PrescriptionStatusService
from app.services.side_effects import drain_outbox
from app.services.webhook_service import AuthnetWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


# AUTHORIZE.NET
@router.post("/authnet", response_model=WebhookAck, response_model_exclude_none=True)
@limiter.limit("60/minute")
async def authnet_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    redis=Depends(get_redis),
    service: AuthnetWebhookService = Depends(get_service(AuthnetWebhookService)),
    session_factory=Depends(get_session_factory),
    digitalrx=Depends(get_digitalrx_client),
    notification_service=Depends(get_notification_service),
):
    """
    Payment events from Authorize.Net. Answers as soon as the payment is
    recorded; pharmacy submission and the confirmation email run afterwards.
    """
    payload = await request.body()
    await service.verify_signature(payload, request.headers.get("x-anet-signature"))

    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        raise PaymentValidationError("Invalid JSON payload") from None

    result = await service.handle_webhook(event=event, redis=redis)

    if result.get("status") == "ok":
        background_tasks.add_task(
            drain_outbox,
            session_factory,
            digitalrx=digitalrx,
            notification_service=notification_service,
        )

    return result


# DIGITALRX
@router.post(
    "/digitalrx",
    response_model=DigitalRxWebhookResponse,
    dependencies=[Depends(verify_digitalrx_webhook)],
)
@limiter.limit("60/minute")
async def digitalrx_webhook(
    request: Request,
    body: DigitalRxWebhookRequest,
    service: PrescriptionStatusService = Depends(get_service(PrescriptionStatusService)),
):
    return await service.apply_webhook(body.model_dump(exclude_none=True))
