"""
Per-transaction payment lifecycle.

    pending -> initiated -> completed
    initiated -> failed -> initiated (retry)

The payer starts (or retries) a payment, the payee confirms or rejects it.
A payee can also confirm an out-of-band payment directly. Once every
transaction of an event is completed the event is settled.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Session
from fastapi import HTTPException
from tabsettle.models.events import Event, EventStatus
from tabsettle.models.settlements import Settlement, SettlementStatus
from tabsettle.rabbitmq.producer import publish_event
from tabsettle.schemas.payment_schema import PaymentRequest
from tabsettle.services.event_service import get_event_or_404
from tabsettle.services.event_status_service import update_event_state, transition_event_status
from tabsettle.services.fx_rate_service import get_payment_provider
from tabsettle.services.payment_gateway import PaymentGateway, get_payment_gateway
from tabsettle.services.settlement_service import get_event_settlements

logger = logging.getLogger(__name__)

INITIATABLE_STATUSES = (SettlementStatus.pending, SettlementStatus.failed)
# active covers events forced into payment by a legacy initiation
SETTLEABLE_STATUSES = (EventStatus.payment, EventStatus.active)

RETRY_REASON = "retry_requested_by_payer"
REJECT_REASON = "rejected_by_payee"


def get_settlement(db: Session, settlement_id: str) -> Optional[Settlement]:
    """Get a settlement transaction by ID"""
    return db.query(Settlement).filter(Settlement.id == settlement_id).first()


def get_settlement_or_404(db: Session, settlement_id: str) -> Settlement:
    settlement = get_settlement(db, settlement_id)
    if not settlement:
        raise HTTPException(status_code=404, detail="Settlement not found")
    return settlement


def initiate_payment(
    db: Session,
    settlement_id: str,
    user_id: str,
    use_real_gateway: bool = False,
    gateway: Optional[PaymentGateway] = None
) -> Settlement:
    """
    Start a payment for a settlement (payer only)

    Args:
        db: Database session
        settlement_id: Transaction to pay
        user_id: Caller, must be the resolved payer of the transaction
        use_real_gateway: Opt in to the real provider outside production
        gateway: Gateway override, the shared instance by default

    Returns:
        The settlement in initiated state

    Raises:
        HTTPException: 403 for a non-payer, 409 for a transaction that is not
            pending/failed or an event still under review, 502 on provider errors
    """
    settlement = get_settlement_or_404(db, settlement_id)
    _require_payer(settlement, user_id, "initiate payment")
    _require_initiatable(settlement)
    return _start_payment(db, settlement, use_real_gateway, gateway or get_payment_gateway())


def retry_payment(
    db: Session,
    settlement_id: str,
    user_id: str,
    use_real_gateway: bool = False,
    gateway: Optional[PaymentGateway] = None
) -> Settlement:
    """
    Retry a payment (payer only).

    An initiated or failed transaction is first marked failed, then started
    again. If the new attempt fails the transaction stays failed with the
    provider error recorded, and the error is raised to the caller.
    """
    settlement = get_settlement_or_404(db, settlement_id)
    _require_payer(settlement, user_id, "retry payment")

    status = SettlementStatus(settlement.status)
    if status == SettlementStatus.completed:
        raise HTTPException(status_code=409, detail="Cannot retry payment: transaction is already completed")

    gateway = gateway or get_payment_gateway()
    if status == SettlementStatus.pending:
        return _start_payment(db, settlement, use_real_gateway, gateway)

    _require_event_in_payment(db, settlement)
    _mark_failed(settlement, RETRY_REASON)
    db.commit()

    try:
        return _start_payment(db, settlement, use_real_gateway, gateway)
    except Exception as e:
        message = str(e.detail) if isinstance(e, HTTPException) else str(e)
        db.rollback()
        settlement = get_settlement_or_404(db, settlement_id)
        settlement.failure_reason = message
        settlement.failed_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(settlement)
        logger.error(f"Retry of settlement {settlement_id} failed: {message}")
        raise


def approve_payment(db: Session, settlement_id: str, user_id: str) -> Settlement:
    """Payee confirms an initiated payment; settles the event when it was the last one"""
    settlement = get_settlement_or_404(db, settlement_id)
    _require_payee(settlement, user_id, "approve payment")

    status = SettlementStatus(settlement.status)
    if status != SettlementStatus.initiated:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot approve payment: transaction is {status.value}, expected initiated"
        )

    return _complete(db, settlement)


def reject_payment(db: Session, settlement_id: str, user_id: str, reason: Optional[str] = None) -> Settlement:
    """Payee rejects an initiated payment; the payer may retry it"""
    settlement = get_settlement_or_404(db, settlement_id)
    _require_payee(settlement, user_id, "reject payment")

    status = SettlementStatus(settlement.status)
    if status != SettlementStatus.initiated:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot reject payment: transaction is {status.value}, expected initiated"
        )

    _mark_failed(settlement, reason or REJECT_REASON)
    db.commit()
    db.refresh(settlement)

    logger.info(f"Payee {user_id} rejected settlement {settlement.id}: {settlement.failure_reason}")
    _publish_payment(settlement)
    return settlement


def mark_paid_by_payee(db: Session, settlement_id: str, user_id: str) -> Settlement:
    """Payee confirms a payment received outside the app"""
    settlement = get_settlement_or_404(db, settlement_id)
    _require_payee(settlement, user_id, "mark payment as paid")

    if SettlementStatus(settlement.status) == SettlementStatus.completed:
        raise HTTPException(status_code=409, detail="Cannot mark payment as paid: transaction is already completed")
    _require_event_in_payment(db, settlement, "mark payment as paid")

    settlement.payment_method = settlement.payment_method or "manual"
    return _complete(db, settlement)


def _require_payer(settlement: Settlement, user_id: str, action: str) -> None:
    if settlement.from_user_id != user_id:
        raise HTTPException(status_code=403, detail=f"Forbidden: Only the payer can {action}")


def _require_payee(settlement: Settlement, user_id: str, action: str) -> None:
    if settlement.to_user_id != user_id:
        raise HTTPException(status_code=403, detail=f"Forbidden: Only the payee can {action}")


def _require_initiatable(settlement: Settlement) -> None:
    status = SettlementStatus(settlement.status)
    if status not in INITIATABLE_STATUSES:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot initiate payment: transaction is {status.value}, expected pending or failed"
        )


def _require_event_in_payment(db: Session, settlement: Settlement, action: str = "initiate payment") -> Event:
    event = get_event_or_404(db, settlement.event_id)
    if EventStatus(event.status) == EventStatus.review:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot {action}: settlement is still awaiting approval"
        )
    return event


def _start_payment(db: Session, settlement: Settlement, use_real_gateway: bool, gateway: PaymentGateway) -> Settlement:
    event = _require_event_in_payment(db, settlement)

    currency = settlement.settlement_currency or settlement.currency
    amount = settlement.settlement_amount if settlement.settlement_amount is not None else settlement.amount
    provider = get_payment_provider(currency)

    session = gateway.start_payment(
        provider,
        PaymentRequest(
            settlement_id=settlement.id,
            amount=amount,
            currency=currency,
            description=f"Settlement payment for event {event.name}"
        ),
        use_real_gateway=use_real_gateway
    )

    if SettlementStatus(settlement.status) == SettlementStatus.failed:
        settlement.retry_count = (settlement.retry_count or 0) + 1
    settlement.status = SettlementStatus.initiated
    settlement.payment_method = session.provider
    settlement.payment_id = session.provider_payment_id
    settlement.checkout_url = session.checkout_url
    settlement.initiated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(settlement)

    logger.info(
        f"Payment {session.provider_payment_id} initiated via {session.provider} "
        f"for settlement {settlement.id} ({amount} {currency})"
    )

    if EventStatus(event.status) == EventStatus.active:
        _force_payment_status(db, settlement.event_id)

    _publish_payment(settlement)
    return settlement


def _force_payment_status(db: Session, event_id: str) -> None:
    def _force(event: Event) -> None:
        if EventStatus(event.status) == EventStatus.active:
            logger.warning(f"Event {event_id} was still active while paying; moving it to payment")
            transition_event_status(event, EventStatus.payment)

    update_event_state(db, event_id, _force)


def _mark_failed(settlement: Settlement, reason: str) -> None:
    settlement.status = SettlementStatus.failed
    settlement.failure_reason = reason
    settlement.failed_at = datetime.now(timezone.utc)


def _complete(db: Session, settlement: Settlement) -> Settlement:
    settlement.status = SettlementStatus.completed
    settlement.completed_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(settlement)

    logger.info(f"Settlement {settlement.id} completed")
    _publish_payment(settlement)
    _settle_event_if_complete(db, settlement.event_id)
    return settlement


def _settle_event_if_complete(db: Session, event_id: str) -> bool:
    """Move the event to settled once every transaction is completed"""
    settlements = get_event_settlements(db, event_id)
    if not settlements or any(SettlementStatus(s.status) != SettlementStatus.completed for s in settlements):
        return False

    def _settle(event: Event) -> bool:
        status = EventStatus(event.status)
        if status not in SETTLEABLE_STATUSES:
            logger.warning(f"Event {event_id} is {status.value}; not settling it from completed payments")
            return False
        transition_event_status(event, EventStatus.settled)
        return True

    return update_event_state(db, event_id, _settle)


def _publish_payment(settlement: Settlement) -> None:
    status = SettlementStatus(settlement.status).value
    publish_event(f"payment.{status}", {
        "settlement_id": settlement.id,
        "event_id": settlement.event_id,
        "status": status,
        "from_user_id": settlement.from_user_id,
        "to_user_id": settlement.to_user_id,
        "amount": str(settlement.amount),
        "currency": settlement.currency,
        "failure_reason": settlement.failure_reason,
    })
