from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from app.db.enums import SideEffectKind, SideEffectStatus
from app.models import SideEffect
from app.services.outbox import MAX_ATTEMPTS, MAX_DELAY_SECONDS, OutboxService, retry_delay
from app.services.side_effects import drain_outbox


def test_retry_delay_doubles_and_caps():
    assert retry_delay(0) == timedelta(seconds=30)
    assert retry_delay(1) == timedelta(seconds=60)
    assert retry_delay(3) == timedelta(seconds=240)
    assert retry_delay(20) == timedelta(seconds=MAX_DELAY_SECONDS)


async def test_enqueue_is_deduplicated(db_session):
    outbox = OutboxService(db_session)

    first = await outbox.enqueue(SideEffectKind.SUBMIT_TO_PHARMACY, {"prescription_id": "x"}, "submit_to_pharmacy:1")
    await db_session.commit()
    second = await outbox.enqueue(SideEffectKind.SUBMIT_TO_PHARMACY, {"prescription_id": "x"}, "submit_to_pharmacy:1")

    assert first is not None
    assert second is None


async def _due(db_session):
    await db_session.execute(
        update(SideEffect).values(next_attempt_at=datetime.now(timezone.utc) - timedelta(seconds=1))
    )
    await db_session.commit()


async def test_successful_dispatch_marks_done(db_session):
    outbox = OutboxService(db_session)
    await outbox.enqueue(SideEffectKind.SEND_CONFIRMATION_EMAIL, {"transaction_id": "t"}, "email:1")
    await db_session.commit()

    calls = []

    async def dispatch(kind, payload):
        calls.append((kind, payload))

    summary = await outbox.process_due(dispatch)

    assert summary == {"processed": 1, "failed": 0, "dead": 0}
    assert calls == [(SideEffectKind.SEND_CONFIRMATION_EMAIL, {"transaction_id": "t"})]

    effect = (await db_session.execute(select(SideEffect))).scalar_one()
    await db_session.refresh(effect)
    assert effect.status == SideEffectStatus.DONE
    assert effect.attempts == 1


async def test_failures_back_off_then_go_dead(db_session, system_logs):
    outbox = OutboxService(db_session)
    await outbox.enqueue(SideEffectKind.SUBMIT_TO_PHARMACY, {"prescription_id": "p"}, "submit:dead")
    await db_session.commit()

    async def dispatch(kind, payload):
        raise RuntimeError("pharmacy down")

    before = datetime.now(timezone.utc)
    summary = await outbox.process_due(dispatch)
    assert summary == {"processed": 0, "failed": 1, "dead": 0}

    effect = (await db_session.execute(select(SideEffect))).scalar_one()
    await db_session.refresh(effect)
    assert effect.status == SideEffectStatus.PENDING
    assert effect.attempts == 1
    assert effect.last_error == "pharmacy down"
    assert effect.next_attempt_at.replace(tzinfo=timezone.utc) >= before + timedelta(seconds=60)

    # Not due yet
    assert await outbox.process_due(dispatch) == {"processed": 0, "failed": 0, "dead": 0}

    for _ in range(MAX_ATTEMPTS - 2):
        await _due(db_session)
        assert (await outbox.process_due(dispatch))["failed"] == 1

    await _due(db_session)
    assert (await outbox.process_due(dispatch))["dead"] == 1

    await db_session.refresh(effect)
    assert effect.status == SideEffectStatus.DEAD
    assert effect.attempts == MAX_ATTEMPTS
    assert len(await system_logs("SIDE_EFFECT_DEAD")) == 1

    # Dead rows are never picked up again
    await _due(db_session)
    assert await outbox.process_due(dispatch) == {"processed": 0, "failed": 0, "dead": 0}


async def test_claimed_rows_are_leased(db_session):
    outbox = OutboxService(db_session)
    await outbox.enqueue(SideEffectKind.SEND_CONFIRMATION_EMAIL, {"transaction_id": "t"}, "email:lease")
    await db_session.commit()

    now = datetime.now(timezone.utc)
    claimed = await outbox._claim_due(now, limit=10)

    assert len(claimed) == 1
    # A second drain running right now sees nothing
    assert await outbox._claim_due(now, limit=10) == []


async def test_confirmation_email_is_sent_once(
    db_session, make_prescription, make_transaction, digitalrx_client, mock_notification_service
):
    transaction = await make_transaction(await make_prescription())
    outbox = OutboxService(db_session)
    await outbox.enqueue(
        SideEffectKind.SEND_CONFIRMATION_EMAIL,
        {"transaction_id": str(transaction.id)},
        f"send_confirmation_email:{transaction.id}",
    )
    await db_session.commit()

    def session_factory():
        class _Session:
            async def __aenter__(self):
                return db_session

            async def __aexit__(self, *exc):
                pass

        return _Session()

    summary = await drain_outbox(
        session_factory, digitalrx=digitalrx_client, notification_service=mock_notification_service
    )

    assert summary["processed"] == 1
    await db_session.refresh(transaction)
    assert transaction.payment_confirmation_email_sent_at is not None
    assert mock_notification_service.notify.await_args.kwargs["subject"] == "Payment received"
