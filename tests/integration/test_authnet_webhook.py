import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from app.db.enums import (
    OrderProgress,
    PaymentStatus,
    PrescriptionPaymentStatus,
    PrescriptionStatus,
    SideEffectKind,
    SideEffectStatus,
)
from app.models import PaymentTransaction, SideEffect
from app.services.payment_service import PaymentService, as_utc

WEBHOOK_URL = "/api/webhooks/authnet"


def _event(transaction, *, notification_id="notif-1", gateway_id="60012345678",
           amount=159.00, event_type="net.authorize.payment.authcapture.created"):
    return {
        "notificationId": notification_id,
        "eventType": event_type,
        "eventDate": "2026-10-18T14:00:00Z",
        "webhookId": "wh-1",
        "payload": {
            "responseCode": 1,
            "authCode": "ABC123",
            "authAmount": amount,
            "invoiceNumber": transaction.authnet_ref_id if transaction else "unknown",
            "entityName": "transaction",
            "id": gateway_id,
            "accountNumber": "XXXX1111",
            "accountType": "Visa",
        },
    }


@pytest.fixture
def post_webhook(client, authnet_signer):
    async def _post(event: dict, *, signature: str | None = "sign"):
        body = json.dumps(event).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if signature == "sign":
            headers["X-ANET-Signature"] = authnet_signer(body)
        elif signature is not None:
            headers["X-ANET-Signature"] = signature
        return await client.post(WEBHOOK_URL, content=body, headers=headers)

    return _post


@pytest.fixture
async def pending_payment(make_prescription, make_transaction, payment_credentials):
    prescription = await make_prescription()
    transaction = await make_transaction(prescription)
    return prescription, transaction


async def test_payment_webhook_completes_and_submits_to_pharmacy(
    post_webhook, pending_payment, db_session, digitalrx_api, mock_notification_service
):
    prescription, transaction = pending_payment

    response = await post_webhook(_event(transaction))

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    await db_session.refresh(transaction)
    await db_session.refresh(prescription)

    assert transaction.payment_status == PaymentStatus.COMPLETED
    assert transaction.authnet_transaction_id == "60012345678"
    assert transaction.card_last_four == "1111"
    assert transaction.webhook_payload["notificationId"] == "notif-1"
    assert transaction.order_progress == OrderProgress.PHARMACY_PROCESSING

    # The background drain ran the queued submission and email
    assert prescription.payment_status == PrescriptionPaymentStatus.PAID
    assert prescription.status == PrescriptionStatus.SUBMITTED
    assert prescription.queue_id == "190190"
    assert len(digitalrx_api.calls_to("RxWebRequest")) == 1
    mock_notification_service.notify.assert_awaited_once()

    effects = (await db_session.execute(select(SideEffect))).scalars().all()
    assert {e.kind for e in effects} == {
        SideEffectKind.SUBMIT_TO_PHARMACY,
        SideEffectKind.SEND_CONFIRMATION_EMAIL,
    }
    assert all(e.status == SideEffectStatus.DONE for e in effects)


async def test_same_gateway_transaction_twice_is_a_no_op(
    post_webhook, pending_payment, db_session, digitalrx_api, system_logs
):
    _, transaction = pending_payment

    first = await post_webhook(_event(transaction, notification_id="notif-1"))
    # Redelivered under a new notification id, so redis does not catch it
    second = await post_webhook(_event(transaction, notification_id="notif-2"))

    assert first.json()["status"] == "ok"
    assert second.json()["status"] == "already_processed"

    assert len(digitalrx_api.calls_to("RxWebRequest")) == 1
    assert len(await system_logs("PAYMENT_COMPLETED")) == 1

    effects = (await db_session.execute(select(SideEffect))).scalars().all()
    assert len(effects) == 2


async def test_gateway_id_held_by_another_transaction(
    post_webhook, pending_payment, make_prescription, make_transaction, db_session
):
    _, transaction = pending_payment
    other = await make_transaction(await make_prescription())

    await post_webhook(_event(transaction, notification_id="a"))
    response = await post_webhook(_event(other, notification_id="b"))

    assert response.json()["status"] == "already_processed"

    await db_session.refresh(other)
    assert other.payment_status == PaymentStatus.PENDING


async def test_redis_drops_exact_redelivery(post_webhook, pending_payment, mock_redis):
    _, transaction = pending_payment

    await post_webhook(_event(transaction))
    response = await post_webhook(_event(transaction))

    assert response.json() == {"status": "duplicate"}
    assert "authnet:event:notif-1" in mock_redis.storage


async def test_amount_mismatch_is_rejected(post_webhook, pending_payment, db_session, system_logs, digitalrx_api):
    prescription, transaction = pending_payment

    response = await post_webhook(_event(transaction, amount=10.00))

    assert response.status_code == 200
    assert response.json() == {"status": "rejected", "reason": "amount_mismatch"}

    await db_session.refresh(transaction)
    await db_session.refresh(prescription)
    assert transaction.payment_status == PaymentStatus.PENDING
    assert prescription.payment_status == PrescriptionPaymentStatus.PENDING
    assert digitalrx_api.requests == []
    assert len(await system_logs("PAYMENT_AMOUNT_MISMATCH")) == 1


async def test_amount_within_one_dollar_is_accepted(post_webhook, pending_payment):
    _, transaction = pending_payment

    response = await post_webhook(_event(transaction, amount=158.50))

    assert response.json()["status"] == "ok"


async def test_missing_amount_is_rejected(post_webhook, pending_payment):
    _, transaction = pending_payment
    event = _event(transaction)
    del event["payload"]["authAmount"]

    response = await post_webhook(event)

    assert response.json()["reason"] == "amount_mismatch"


async def test_unknown_invoice_is_logged(post_webhook, payment_credentials, system_logs):
    response = await post_webhook(_event(None))

    assert response.json()["status"] == "transaction_not_found"
    assert len(await system_logs("PAYMENT_WEBHOOK_UNMATCHED")) == 1


async def test_missing_signature_is_rejected(post_webhook, pending_payment):
    _, transaction = pending_payment

    response = await post_webhook(_event(transaction), signature=None)

    assert response.status_code == 401
    assert response.json()["success"] is False


async def test_bad_signature_is_rejected(post_webhook, pending_payment, db_session):
    _, transaction = pending_payment

    response = await post_webhook(_event(transaction), signature="sha512=" + "0" * 128)

    assert response.status_code == 401
    await db_session.refresh(transaction)
    assert transaction.payment_status == PaymentStatus.PENDING


async def test_lowercase_signature_is_accepted(client, pending_payment, authnet_signer):
    _, transaction = pending_payment
    body = json.dumps(_event(transaction)).encode("utf-8")

    response = await client.post(
        WEBHOOK_URL,
        content=body,
        headers={"X-ANET-Signature": authnet_signer(body).lower()},
    )

    assert response.status_code == 200


async def test_no_signature_key_configured(post_webhook, make_prescription, make_transaction):
    transaction = await make_transaction(await make_prescription())

    response = await post_webhook(_event(transaction))

    assert response.status_code == 500
    assert "not configured" in response.json()["error"]


async def test_missing_transaction_id_releases_redis_key(post_webhook, pending_payment, mock_redis):
    _, transaction = pending_payment
    event = _event(transaction)
    del event["payload"]["id"]

    response = await post_webhook(event)

    assert response.status_code == 400
    assert "authnet:event:notif-1" not in mock_redis.storage


async def test_refund_event(post_webhook, pending_payment, db_session):
    prescription, transaction = pending_payment
    await post_webhook(_event(transaction))

    response = await post_webhook(_event(
        transaction,
        notification_id="notif-refund",
        event_type="net.authorize.payment.refund.created",
        amount=50.00,
    ))

    assert response.json()["status"] == "refunded"

    await db_session.refresh(transaction)
    await db_session.refresh(prescription)
    assert transaction.payment_status == PaymentStatus.REFUNDED
    assert transaction.refund_amount_cents == 5000
    assert transaction.refunded_at is not None
    assert prescription.payment_status == PrescriptionPaymentStatus.REFUNDED


async def test_void_of_unknown_gateway_id_is_ignored(post_webhook, payment_credentials, pending_payment):
    _, transaction = pending_payment

    response = await post_webhook(_event(
        transaction,
        gateway_id="never-seen",
        event_type="net.authorize.payment.void.created",
    ))

    assert response.json()["status"] == "ignored"


async def test_unhandled_event_type_is_ignored(post_webhook, pending_payment):
    _, transaction = pending_payment

    response = await post_webhook(_event(
        transaction,
        event_type="net.authorize.customer.created",
    ))

    assert response.json()["status"] == "ignored"


async def test_success_on_an_already_completed_payment_changes_nothing(
    make_prescription, make_transaction, db_session, mock_notification_service,
    digitalrx_client, authnet_client, system_logs
):
    paid_at = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
    prescription = await make_prescription(
        status=PrescriptionStatus.PAYMENT_RECEIVED,
        payment_status=PrescriptionPaymentStatus.PAID,
    )
    transaction = await make_transaction(
        prescription,
        payment_status=PaymentStatus.COMPLETED,
        order_progress=OrderProgress.PAYMENT_RECEIVED,
        authnet_transaction_id="60000000001",
        paid_at=paid_at,
    )
    transaction_id = transaction.id
    service = PaymentService(
        db_session, mock_notification_service, digitalrx=digitalrx_client, authnet=authnet_client
    )

    # Skips the webhook's read checks and goes straight to the conditional update
    applied = await service.record_payment_success(
        transaction_id,
        gateway_transaction_id="60099999999",
        webhook_payload={"id": "60099999999"},
    )

    assert applied is False
    assert (await db_session.execute(select(SideEffect))).scalars().all() == []
    assert await system_logs("PAYMENT_COMPLETED") == []

    stored = await db_session.get(PaymentTransaction, transaction_id, populate_existing=True)
    assert as_utc(stored.paid_at) == paid_at
    assert stored.authnet_transaction_id == "60000000001"
    assert stored.webhook_received_at is None
