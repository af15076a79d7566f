from fastapi import APIRouter, BackgroundTasks, Depends, Request

from app.core.deps import (
    get_digitalrx_client,
    get_notification_service,
    get_provider_or_internal,
    get_service,
    get_session_factory,
)
from app.core.limiter import limiter
from app.models.user import User
from app.schemas.payment import (
    GenerateLinkRequest,
    GenerateLinkResponse,
    HostedTokenRequest,
    HostedTokenResponse,
    PaymentStatusResponse,
    ProcessPaymentRequest,
    ProcessPaymentResponse,
)
from app.services.authnet import CardDetails
from app.services.payment_service import PaymentService
from app.services.side_effects import drain_outbox

router = APIRouter(prefix="/payments", tags=["Payments"])


# GENERATE PAYMENT LINK
@router.post("/generate-link", response_model=GenerateLinkResponse)
async def generate_payment_link(
    body: GenerateLinkRequest,
    caller: User | None = Depends(get_provider_or_internal),
    service: PaymentService = Depends(get_service(PaymentService)),
):
    """
    Provider (or an internal job) creates the patient's payment link,
    optionally emailing it.
    """
    return await service.generate_link(
        prescription_id=body.prescription_id,
        consultation_fee_cents=body.consultation_fee_cents,
        medication_cost_cents=body.medication_cost_cents,
        shipping_fee_cents=body.shipping_fee_cents,
        description=body.description,
        patient_email=body.patient_email,
        send_email=body.send_email,
        requested_by=caller,
    )


# HOSTED PAYMENT PAGE TOKEN
@router.post("/hosted-token", response_model=HostedTokenResponse)
@limiter.limit("10/minute")
async def get_hosted_token(
    request: Request,
    body: HostedTokenRequest,
    service: PaymentService = Depends(get_service(PaymentService)),
):
    return await service.get_hosted_token(payment_token=body.payment_token)


# DIRECT CARD PAYMENT
@router.post("/process-payment", response_model=ProcessPaymentResponse)
@limiter.limit("5/minute")
async def process_payment(
    request: Request,
    body: ProcessPaymentRequest,
    background_tasks: BackgroundTasks,
    service: PaymentService = Depends(get_service(PaymentService)),
    session_factory=Depends(get_session_factory),
    digitalrx=Depends(get_digitalrx_client),
    notification_service=Depends(get_notification_service),
):
    """Charges the card directly; pharmacy submission and the receipt follow in the background."""
    card = CardDetails(
        number=body.card_number,
        expiration_date=body.expiration_date,
        cvv=body.cvv,
        cardholder_name=body.cardholder_name,
        billing_address=body.billing_address.model_dump() if body.billing_address else None,
    )
    result = await service.process_payment(payment_token=body.payment_token, card=card)

    background_tasks.add_task(
        drain_outbox,
        session_factory,
        digitalrx=digitalrx,
        notification_service=notification_service,
    )
    return result


# PAYMENT PAGE STATUS
@router.get("/{payment_token}", response_model=PaymentStatusResponse)
async def get_payment_status(
    payment_token: str,
    service: PaymentService = Depends(get_service(PaymentService)),
):
    return await service.get_payment(payment_token)
