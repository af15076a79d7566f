import hashlib
import hmac
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    InvalidTransition,
    PaymentConfigurationError,
    PaymentValidationError,
    WebhookSignatureError,
)
from app.crud.payment_transaction import PaymentTransactionCRUD
from app.crud.system_log import SystemLogCRUD
from app.db.enums import LogStatus, OrderProgress, PaymentStatus, PrescriptionPaymentStatus
from app.models.prescription import Prescription
from app.services.authnet import load_merchant_credentials
from app.services.digitalrx.client import DigitalRxClient
from app.services.lifecycle import advance_order_progress, transition_payment
from app.services.notification.notification_service import NotificationService
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

AUTHNET_EVENT_TTL = 60 * 60 * 24
AMOUNT_TOLERANCE = Decimal("1.00")

PAYMENT_SUCCESS_EVENTS = frozenset({
    "net.authorize.payment.authcapture.created",
    "net.authorize.payment.authorization.created",
})
CAPTURE_EVENT = "net.authorize.payment.capture.created"
VOID_EVENT = "net.authorize.payment.void.created"
REFUND_EVENT = "net.authorize.payment.refund.created"


def _to_decimal(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class AuthnetWebhookService:

    def __init__(
        self,
        db: AsyncSession,
        notification_service: NotificationService,
        digitalrx: DigitalRxClient | None = None,
    ):
        self.db = db
        self.payment_service = PaymentService(db, notification_service, digitalrx=digitalrx)
        self.transactions = PaymentTransactionCRUD(db)
        self.audit = SystemLogCRUD(db)

    async def _signature_key(self) -> str:
        try:
            credentials = await load_merchant_credentials(self.db)
        except PaymentConfigurationError:
            credentials = None

        key = (credentials.signature_key if credentials else None) or settings.authnet_signature_key
        if not key:
            raise PaymentConfigurationError("Webhook signature key not configured")
        return key

    async def verify_signature(self, raw_body: bytes, header: str | None) -> None:
        """
        `X-ANET-Signature: sha512=<HEX>` is an HMAC-SHA512 of the raw body
        keyed with the merchant's signature key.
        """
        key = await self._signature_key()

        if not header:
            raise WebhookSignatureError("Missing webhook signature")

        received = header.split("=", 1)[1] if "=" in header else header
        expected = hmac.new(key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()

        if not hmac.compare_digest(expected.lower(), received.strip().lower()):
            logger.warning("Authorize.Net webhook signature mismatch")
            raise WebhookSignatureError("Invalid webhook signature")


    # WEBHOOK ENTRYPOINT
    async def handle_webhook(self, *, event: dict, redis) -> dict:
        notification_id = event.get("notificationId")
        event_key = f"authnet:event:{notification_id}" if notification_id else None

        # Drops exact redeliveries of one notification
        if event_key and not await redis.set(event_key, "1", ex=AUTHNET_EVENT_TTL, nx=True):
            return {"status": "duplicate"}

        try:
            return await self._dispatch(event)
        except Exception:
            # Let the gateway's retry through
            if event_key:
                await redis.delete(event_key)
            raise

    async def _dispatch(self, event: dict) -> dict:
        event_type = event.get("eventType")
        payload = event.get("payload") or {}

        if not event_type:
            return {"status": "invalid_event"}

        if not payload.get("id"):
            raise PaymentValidationError("No transaction ID in webhook payload")

        logger.info(f"Authorize.Net webhook {event_type} for {payload['id']}")

        if event_type in PAYMENT_SUCCESS_EVENTS:
            return await self._handle_payment_success(payload, event)

        if event_type == CAPTURE_EVENT:
            return await self._handle_captured(payload)

        if event_type == VOID_EVENT:
            return await self._handle_voided(payload)

        if event_type == REFUND_EVENT:
            return await self._handle_refunded(payload)

        return {"status": "ignored"}


    # PAYMENT SUCCEEDED
    async def _handle_payment_success(self, payload: dict, event: dict) -> dict:
        gateway_id = str(payload["id"])
        invoice_number = payload.get("invoiceNumber")

        transaction = (
            await self.transactions.get_by_ref_id(invoice_number) if invoice_number else None
        )
        if not transaction:
            logger.warning(f"No transaction for invoice {invoice_number}")
            await self.audit.record(
                action="PAYMENT_WEBHOOK_UNMATCHED",
                status=LogStatus.WARNING,
                details=f"Gateway transaction {gateway_id}, invoice {invoice_number}",
            )
            return {"status": "transaction_not_found"}

        holder = await self.transactions.get_by_gateway_id(gateway_id)
        if holder:
            return {"status": "already_processed"}

        if transaction.payment_status == PaymentStatus.COMPLETED:
            return {"status": "already_processed"}

        expected = Decimal(transaction.total_amount_cents) / 100
        received = _to_decimal(payload.get("authAmount"))

        if received is None or abs(received - expected) > AMOUNT_TOLERANCE:
            logger.error(
                f"Webhook amount {received} does not match expected {expected:.2f}",
                extra={"transaction_id": transaction.id},
            )
            await self.audit.record(
                action="PAYMENT_AMOUNT_MISMATCH",
                status=LogStatus.ERROR,
                details=(
                    f"Transaction {transaction.id}: expected ${expected:.2f}, "
                    f"received {received}, gateway {gateway_id}"
                ),
            )
            return {"status": "rejected", "reason": "amount_mismatch"}

        applied = await self.payment_service.record_payment_success(
            transaction.id,
            gateway_transaction_id=gateway_id,
            response_code=str(payload.get("responseCode")) if payload.get("responseCode") else None,
            card_last_four=payload.get("accountNumber"),
            card_type=payload.get("accountType"),
            webhook_payload=event,
        )

        return {"status": "ok" if applied else "already_processed"}


    # CAPTURED / VOIDED / REFUNDED
    async def _move(self, payload: dict, target: PaymentStatus):
        transaction = await self.transactions.get_by_gateway_id(str(payload["id"]))
        if not transaction:
            logger.warning(f"No transaction for gateway id {payload['id']}")
            return None

        try:
            changed = transition_payment(transaction, target)
        except InvalidTransition as exc:
            logger.warning(exc.message, extra={"transaction_id": transaction.id})
            return None

        return transaction if changed else None

    async def _handle_captured(self, payload: dict) -> dict:
        transaction = await self._move(payload, PaymentStatus.COMPLETED)
        if not transaction:
            return {"status": "ignored"}

        advance_order_progress(transaction, OrderProgress.PAYMENT_RECEIVED)
        transaction.paid_at = transaction.paid_at or datetime.now(timezone.utc)
        await self.db.commit()
        return {"status": "captured"}

    async def _handle_voided(self, payload: dict) -> dict:
        transaction = await self._move(payload, PaymentStatus.CANCELLED)
        if not transaction:
            return {"status": "ignored"}

        await self.db.commit()
        return {"status": "voided"}

    async def _handle_refunded(self, payload: dict) -> dict:
        transaction = await self._move(payload, PaymentStatus.REFUNDED)
        if not transaction:
            return {"status": "ignored"}

        refund = _to_decimal(payload.get("authAmount"))
        transaction.refund_amount_cents = (
            int((refund * 100).to_integral_value()) if refund is not None
            else transaction.total_amount_cents
        )
        transaction.refunded_at = datetime.now(timezone.utc)

        if transaction.prescription_id:
            prescription = await self.db.get(Prescription, transaction.prescription_id)
            if prescription:
                prescription.payment_status = PrescriptionPaymentStatus.REFUNDED

        await self.db.commit()
        logger.info("Payment refunded", extra={"transaction_id": transaction.id})
        return {"status": "refunded"}
