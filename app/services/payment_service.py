import logging
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    NotAuthorized,
    NotificationError,
    PaymentValidationError,
    ResourceNotFound,
)
from app.crud.payment_transaction import PaymentTransactionCRUD
from app.crud.prescription import PrescriptionCRUD
from app.crud.system_log import SystemLogCRUD
from app.db.enums import (
    LogStatus,
    OrderProgress,
    PaymentStatus,
    PrescriptionPaymentStatus,
    PrescriptionStatus,
    SideEffectKind,
)
from app.models.patient import Patient
from app.models.payment_transaction import PaymentTransaction
from app.models.pharmacy import Pharmacy
from app.models.prescription import Prescription
from app.models.user import User
from app.services.authnet import (
    DECLINED,
    AuthorizeNetClient,
    CardDetails,
    load_merchant_credentials,
)
from app.services.digitalrx.client import DigitalRxClient
from app.services.lifecycle import (
    advance_order_progress,
    can_transition_payment,
    transition_payment,
    transition_prescription,
)
from app.services.notification.notification_service import (
    NotificationService,
    payment_confirmation_message,
    payment_link_message,
)
from app.services.outbox import OutboxService
from app.services.pharmacy_submission_service import PharmacySubmissionService

logger = logging.getLogger(__name__)

MANUAL_PAYMENT = "manual-payment"


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def cents_to_dollars(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def submission_dedupe_key(transaction_id) -> str:
    return f"submit_to_pharmacy:{transaction_id}"


class PaymentService:

    def __init__(
        self,
        db: AsyncSession,
        notification_service: NotificationService,
        digitalrx: DigitalRxClient | None = None,
        authnet: AuthorizeNetClient | None = None,
    ):
        self.db = db
        self.notification_service = notification_service
        self.digitalrx = digitalrx or DigitalRxClient()
        self.authnet = authnet or AuthorizeNetClient()
        self.transactions = PaymentTransactionCRUD(db)
        self.prescriptions = PrescriptionCRUD(db)
        self.outbox = OutboxService(db)
        self.audit = SystemLogCRUD(db)


    # GENERATE PAYMENT LINK
    async def generate_link(
        self,
        *,
        prescription_id: UUID,
        consultation_fee_cents: int,
        medication_cost_cents: int,
        shipping_fee_cents: int = 0,
        description: str | None = None,
        patient_email: str | None = None,
        send_email: bool = False,
        requested_by: User | None = None,
    ) -> dict:
        """
        Creates a payment transaction and the patient-facing link for it.

        `requested_by` is None for internal callers (refill job, outbox).
        """
        # Fails fast with 500 when the merchant account is not set up
        await load_merchant_credentials(self.db)

        prescription = await self.prescriptions.get_by_id(prescription_id)
        if not prescription:
            raise ResourceNotFound("Prescription not found")

        if requested_by and prescription.prescriber_id != requested_by.id:
            raise NotAuthorized("You can only bill your own prescriptions")

        if prescription.payment_status == PrescriptionPaymentStatus.PAID:
            raise PaymentValidationError("Prescription is already paid")

        total_cents = consultation_fee_cents + medication_cost_cents + shipping_fee_cents
        if total_cents <= 0:
            raise PaymentValidationError("Total amount must be greater than zero")

        patient = await self.db.get(Patient, prescription.patient_id)
        provider = await self.db.get(User, prescription.prescriber_id)
        pharmacy = (
            await self.db.get(Pharmacy, prescription.pharmacy_id)
            if prescription.pharmacy_id else None
        )

        # Only the newest link stays payable
        superseded = await self.transactions.get_open_for_prescription(prescription.id)
        for previous in superseded:
            transition_payment(previous, PaymentStatus.CANCELLED)
            previous.error_message = "Superseded by a newer payment link"

        token = secrets.token_hex(32)
        expires_at = datetime.now(timezone.utc) + timedelta(days=settings.payment_link_ttl_days)
        payment_url = f"{settings.app_url.rstrip('/')}/payment/direct/{token}"

        transaction = PaymentTransaction(
            id=uuid4(),
            prescription_id=prescription.id,
            total_amount_cents=total_cents,
            consultation_fee_cents=consultation_fee_cents,
            medication_cost_cents=medication_cost_cents,
            shipping_fee_cents=shipping_fee_cents,
            patient_id=prescription.patient_id,
            patient_email=patient_email or (patient.email if patient else None),
            patient_name=patient.full_name if patient else None,
            provider_id=prescription.prescriber_id,
            provider_name=provider.full_name if provider else None,
            pharmacy_id=prescription.pharmacy_id,
            pharmacy_name=pharmacy.name if pharmacy else None,
            authnet_ref_id=uuid4().hex[:20],
            payment_token=token,
            payment_link_url=payment_url,
            payment_link_expires_at=expires_at,
            payment_status=PaymentStatus.PENDING,
            order_progress=OrderProgress.PAYMENT_PENDING,
            description=description or f"Prescription: {prescription.medication}",
        )
        self.transactions.add(transaction)

        prescription.payment_status = PrescriptionPaymentStatus.PENDING
        prescription.payment_transaction_id = transaction.id

        await self.db.commit()

        logger.info(
            f"Payment link created for ${cents_to_dollars(total_cents)}, "
            f"{len(superseded)} earlier link(s) cancelled",
            extra={"prescription_id": prescription.id, "transaction_id": transaction.id},
        )

        email_sent = False
        if send_email:
            email_sent = await self._send_link_email(transaction)

        return {
            "success": True,
            "payment_url": payment_url,
            "payment_token": token,
            "transaction_id": transaction.id,
            "expires_at": expires_at,
            "email_sent": email_sent,
        }

    async def _send_link_email(self, transaction: PaymentTransaction) -> bool:
        delivered = await self.notification_service.notify(
            email=transaction.patient_email,
            subject="Your prescription is ready for payment",
            message=payment_link_message(
                patient_name=transaction.patient_name,
                provider_name=transaction.provider_name,
                amount=str(cents_to_dollars(transaction.total_amount_cents)),
                payment_url=transaction.payment_link_url,
                expires_at=transaction.payment_link_expires_at,
            ),
        )

        if not delivered:
            logger.warning(
                "Payment link email was not delivered",
                extra={"transaction_id": transaction.id},
            )
            return False

        transaction.payment_link_email_sent_at = datetime.now(timezone.utc)
        await self.db.commit()
        return True


    # PAYMENT PAGE
    async def _usable_transaction(self, payment_token: str) -> PaymentTransaction:
        transaction = await self.transactions.get_by_token(payment_token)
        if not transaction:
            raise ResourceNotFound("Payment not found")

        if transaction.payment_status == PaymentStatus.COMPLETED:
            raise PaymentValidationError("Payment has already been completed")

        prescription = (
            await self.prescriptions.get_by_id(transaction.prescription_id)
            if transaction.prescription_id else None
        )
        if prescription and prescription.payment_status == PrescriptionPaymentStatus.PAID:
            raise PaymentValidationError("Prescription is already paid")

        expires_at = as_utc(transaction.payment_link_expires_at)
        if expires_at and expires_at < datetime.now(timezone.utc):
            if can_transition_payment(transaction.payment_status, PaymentStatus.EXPIRED):
                transition_payment(transaction, PaymentStatus.EXPIRED)
                await self.db.commit()
            raise PaymentValidationError("Payment link has expired")

        if not can_transition_payment(transaction.payment_status, PaymentStatus.COMPLETED):
            raise PaymentValidationError(
                f"Payment is {transaction.payment_status.value} and can no longer be paid"
            )

        return transaction

    async def get_payment(self, payment_token: str) -> PaymentTransaction:
        transaction = await self.transactions.get_by_token(payment_token)
        if not transaction:
            raise ResourceNotFound("Payment not found")
        return transaction

    async def get_hosted_token(self, *, payment_token: str) -> dict:
        transaction = await self._usable_transaction(payment_token)
        credentials = await load_merchant_credentials(self.db)

        base = settings.app_url.rstrip("/")
        form_token = await self.authnet.get_hosted_payment_token(
            credentials,
            ref_id=transaction.authnet_ref_id,
            amount=cents_to_dollars(transaction.total_amount_cents),
            description=transaction.description,
            email=transaction.patient_email,
            return_url=f"{base}/payment/success/{payment_token}",
            cancel_url=f"{base}/payment/cancelled/{payment_token}",
        )

        transaction.payment_link_used_at = datetime.now(timezone.utc)
        await self.db.commit()

        return {
            "success": True,
            "form_token": form_token,
            "payment_url": self.authnet.hosted_url(credentials.environment),
        }

    async def process_payment(self, *, payment_token: str, card: CardDetails) -> dict:
        transaction = await self._usable_transaction(payment_token)
        credentials = await load_merchant_credentials(self.db)
        amount = cents_to_dollars(transaction.total_amount_cents)

        result = await self.authnet.charge_card(
            credentials,
            ref_id=transaction.authnet_ref_id,
            amount=amount,
            card=card,
            description=transaction.description,
            email=transaction.patient_email,
        )

        if not result.approved:
            target = PaymentStatus.DECLINED if result.response_code == DECLINED else PaymentStatus.FAILED
            transition_payment(transaction, target)
            transaction.authnet_response_code = result.response_code
            transaction.authnet_response_reason = result.error_message
            transaction.error_message = result.error_message
            await self.db.commit()

            logger.warning(
                f"Card payment {target.value}: {result.error_message}",
                extra={"transaction_id": transaction.id},
            )
            raise PaymentValidationError(result.error_message, error_code=result.error_code)

        await self.record_payment_success(
            transaction.id,
            gateway_transaction_id=result.transaction_id,
            response_code=result.response_code,
            card_last_four=card.last_four,
            card_type=result.account_type,
        )

        return {
            "success": True,
            "transaction_id": result.transaction_id,
            "amount": f"{amount:.2f}",
        }


    # SHARED SUCCESS PATH (card payment + gateway webhook)
    async def record_payment_success(
        self,
        transaction_id: UUID,
        *,
        gateway_transaction_id: str | None,
        response_code: str | None = None,
        card_last_four: str | None = None,
        card_type: str | None = None,
        webhook_payload: dict | None = None,
    ) -> bool:
        """
        Completes the transaction, marks the prescription paid and queues
        the pharmacy submission and confirmation email, all in one commit.

        Returns False when the payment had already been recorded.
        """
        now = datetime.now(timezone.utc)
        values = {
            "authnet_transaction_id": gateway_transaction_id,
            "authnet_response_code": response_code,
            "order_progress": OrderProgress.PAYMENT_RECEIVED,
            "paid_at": now,
            "error_message": None,
        }
        if card_last_four:
            values["card_last_four"] = card_last_four[-4:]
        if card_type:
            values["card_type"] = card_type
        if webhook_payload is not None:
            values["webhook_payload"] = webhook_payload
            values["webhook_received_at"] = now

        try:
            applied = await self.transactions.complete_if_open(transaction_id, **values)
            if not applied:
                await self.db.rollback()
                logger.info("Payment already recorded", extra={"transaction_id": transaction_id})
                return False

            transaction = await self.db.get(PaymentTransaction, transaction_id, populate_existing=True)
            prescription = (
                await self.prescriptions.get_by_id(transaction.prescription_id)
                if transaction.prescription_id else None
            )

            if prescription:
                prescription.payment_status = PrescriptionPaymentStatus.PAID
                prescription.payment_transaction_id = transaction.id
                if prescription.status == PrescriptionStatus.PENDING_PAYMENT:
                    transition_prescription(prescription, PrescriptionStatus.PAYMENT_RECEIVED)

                await self.outbox.enqueue(
                    SideEffectKind.SUBMIT_TO_PHARMACY,
                    {"prescription_id": str(prescription.id)},
                    submission_dedupe_key(transaction.id),
                )

            await self.outbox.enqueue(
                SideEffectKind.SEND_CONFIRMATION_EMAIL,
                {"transaction_id": str(transaction.id)},
                f"send_confirmation_email:{transaction.id}",
            )

            self.audit.add(
                action="PAYMENT_COMPLETED",
                status=LogStatus.SUCCESS,
                details=(
                    f"Transaction {transaction.id} paid "
                    f"${cents_to_dollars(transaction.total_amount_cents)} "
                    f"(gateway {gateway_transaction_id})"
                ),
            )

            await self.db.commit()

        except IntegrityError:
            # Another delivery stored the same gateway transaction id first
            await self.db.rollback()
            logger.info(
                f"Gateway transaction {gateway_transaction_id} already recorded",
                extra={"transaction_id": transaction_id},
            )
            return False

        logger.info(
            "Payment completed",
            extra={"transaction_id": transaction_id, "prescription_id": transaction.prescription_id},
        )
        return True


    # MANUAL MARK PAID
    async def mark_paid(self, *, prescription_id: UUID, user: User) -> dict:
        prescription = await self.prescriptions.get_by_id(prescription_id)
        if not prescription:
            raise ResourceNotFound("Prescription not found")

        if prescription.prescriber_id != user.id:
            raise NotAuthorized("You can only mark your own prescriptions as paid")

        if prescription.status != PrescriptionStatus.PENDING_PAYMENT:
            raise PaymentValidationError(
                f"Cannot mark as paid: prescription status is {prescription.status.value}"
            )

        now = datetime.now(timezone.utc)
        transaction = None
        if prescription.payment_transaction_id:
            transaction = await self.transactions.get_by_id(prescription.payment_transaction_id)

        # An expired or cancelled link cannot be completed; record the cash payment separately
        if transaction and can_transition_payment(transaction.payment_status, PaymentStatus.COMPLETED):
            transition_payment(transaction, PaymentStatus.COMPLETED)
        else:
            transaction = self._manual_transaction(prescription, user)
            self.transactions.add(transaction)

        advance_order_progress(transaction, OrderProgress.PAYMENT_RECEIVED)
        transaction.card_type = MANUAL_PAYMENT
        transaction.paid_at = now

        prescription.payment_status = PrescriptionPaymentStatus.PAID
        prescription.payment_transaction_id = transaction.id
        transition_prescription(prescription, PrescriptionStatus.PAYMENT_RECEIVED)

        self.audit.add(
            action="PRESCRIPTION_MARKED_PAID",
            status=LogStatus.SUCCESS,
            details=f"Prescription {prescription.id} marked paid manually",
            user_id=user.id,
        )
        await self.db.commit()

        transaction_id = transaction.id
        submission = PharmacySubmissionService(self.db, self.digitalrx)

        try:
            result = await submission.submit(prescription_id=prescription_id, user_id=user.id)
        except Exception as exc:
            await self.db.rollback()
            error = getattr(exc, "message", None) or str(exc)
            logger.exception(
                "Marked as paid but pharmacy submission failed",
                extra={"prescription_id": prescription_id},
            )

            await self.outbox.enqueue(
                SideEffectKind.SUBMIT_TO_PHARMACY,
                {"prescription_id": str(prescription_id)},
                submission_dedupe_key(transaction_id),
            )
            await self.db.commit()

            return {
                "success": True,
                "message": "Prescription marked as paid",
                "warning": "Marked as paid but failed to submit to pharmacy. The submission will be retried.",
                "pharmacy_error": error,
            }

        return {
            "success": True,
            "message": "Prescription marked as paid and submitted to pharmacy",
            "queue_id": result["queue_id"],
        }

    @staticmethod
    def _manual_transaction(prescription: Prescription, user: User) -> PaymentTransaction:
        medication_cents = int(
            (Decimal(prescription.patient_price or 0) * 100).to_integral_value()
        )
        consultation_cents = prescription.profit_cents or 0
        shipping_cents = prescription.shipping_fee_cents or 0

        return PaymentTransaction(
            id=uuid4(),
            prescription_id=prescription.id,
            total_amount_cents=medication_cents + consultation_cents + shipping_cents,
            consultation_fee_cents=consultation_cents,
            medication_cost_cents=medication_cents,
            shipping_fee_cents=shipping_cents,
            patient_id=prescription.patient_id,
            provider_id=user.id,
            provider_name=user.full_name,
            pharmacy_id=prescription.pharmacy_id,
            payment_token=f"manual-{uuid4()}",
            payment_status=PaymentStatus.COMPLETED,
            order_progress=OrderProgress.PAYMENT_PENDING,
            description=f"Manual payment: {prescription.medication}",
        )


    # CONFIRMATION EMAIL (outbox)
    async def send_confirmation_email(self, *, transaction_id: UUID) -> bool:
        transaction = await self.transactions.get_by_id(transaction_id)
        if not transaction:
            raise ResourceNotFound("Payment not found")

        if transaction.payment_confirmation_email_sent_at:
            return False

        if not transaction.patient_email:
            logger.info("No patient email on file, skipping confirmation", extra={"transaction_id": transaction.id})
            return False

        delivered = await self.notification_service.notify(
            email=transaction.patient_email,
            subject="Payment received",
            message=payment_confirmation_message(
                patient_name=transaction.patient_name,
                amount=str(cents_to_dollars(transaction.total_amount_cents)),
                description=transaction.description,
            ),
        )
        if not delivered:
            raise NotificationError("Confirmation email was not delivered")

        transaction.payment_confirmation_email_sent_at = datetime.now(timezone.utc)
        await self.db.commit()
        return True
