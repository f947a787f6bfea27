"""
Event status coordination.

The event document carries the lifecycle status that every other
settlement operation is gated on:

    active -> review -> payment -> settled -> closed

plus the zero-transaction fast path active -> settled and the forced
active -> payment used when a payment is started on an event that never
went through review. This module is the only writer of ``status``,
``settlement_approvals`` and ``settlement_stale``; all writes go through
``update_event_state`` so concurrent requests cannot silently overwrite
each other.
"""
import logging
import warnings
from typing import Callable, Optional, TypeVar
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from fastapi import HTTPException
from tabsettle.models.events import Event, EventStatus
from tabsettle.rabbitmq.producer import publish_event
from tabsettle.services.event_service import get_event, get_event_or_404, is_event_admin

logger = logging.getLogger(__name__)

T = TypeVar("T")

ALLOWED_TRANSITIONS = {
    EventStatus.active: {EventStatus.review, EventStatus.settled, EventStatus.payment},
    EventStatus.review: {EventStatus.review, EventStatus.payment, EventStatus.settled},
    EventStatus.payment: {EventStatus.settled},
    EventStatus.settled: {EventStatus.closed},
    EventStatus.closed: set(),
}

LOCKED_STATUSES = (EventStatus.payment, EventStatus.settled, EventStatus.closed)

LOCK_REASONS = {
    EventStatus.payment: "Payments are in progress.",
    EventStatus.settled: "The event is settled.",
    EventStatus.closed: "The event is closed.",
}

MAX_UPDATE_ATTEMPTS = 3


def transition_event_status(event: Event, target: EventStatus) -> None:
    """Move an event to ``target``, rejecting transitions the lifecycle does not allow"""
    current = EventStatus(event.status)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot move event from {current.value} to {target.value}"
        )
    event.status = target


def update_event_state(
    db: Session,
    event_id: str,
    mutate: Callable[[Event], T],
    max_attempts: int = MAX_UPDATE_ATTEMPTS
) -> T:
    """
    Read the event, apply ``mutate`` and commit as one unit of work.

    The events table is versioned, so the UPDATE only matches the row
    version that was read. If another request committed in between,
    SQLAlchemy raises StaleDataError; the whole unit of work is rolled
    back and ``mutate`` runs again on fresh state.

    Args:
        db: Database session
        event_id: Event to update
        mutate: Callback that validates and changes the event (and any other
            rows that must commit together with it); its return value is
            passed through
        max_attempts: How many times to retry on a version conflict

    Returns:
        Whatever ``mutate`` returned

    Raises:
        HTTPException: 404 if the event is missing, 409 if every attempt lost
            the race, or whatever ``mutate`` raised
    """
    for attempt in range(1, max_attempts + 1):
        event = get_event_or_404(db, event_id)
        previous_status = EventStatus(event.status)
        try:
            result = mutate(event)
            db.commit()
        except StaleDataError:
            db.rollback()
            logger.warning(
                f"Concurrent update on event {event_id} (attempt {attempt}/{max_attempts}), retrying"
            )
            continue
        except Exception:
            db.rollback()
            raise

        current_status = EventStatus(event.status)
        if current_status != previous_status:
            logger.info(f"Event {event_id} moved from {previous_status.value} to {current_status.value}")
            publish_event("event.status_changed", {
                "event_id": event_id,
                "from_status": previous_status.value,
                "to_status": current_status.value,
            })
        return result

    raise HTTPException(
        status_code=409,
        detail=f"Concurrent update conflict: event {event_id} was modified by another request"
    )


def get_event_lock_status(db: Session, event_id: str) -> Optional[EventStatus]:
    """
    Return the event status if the event is locked for edits, else None.

    Review is deliberately not locked: expenses and groups may still change
    while the plan is under review, which is what makes a plan stale.
    """
    event = get_event(db, event_id)
    if not event:
        return None
    status = EventStatus(event.status)
    if status in LOCKED_STATUSES:
        return status
    return None


def require_editable_event(db: Session, event_id: str) -> None:
    """Raise 403 if the event is locked. Call before mutating expenses or groups."""
    lock_status = get_event_lock_status(db, event_id)
    if lock_status:
        raise HTTPException(
            status_code=403,
            detail=f"Forbidden: This event can no longer be edited. {LOCK_REASONS[lock_status]}"
        )


def require_active_event(db: Session, event_id: str) -> None:
    """Deprecated alias of require_editable_event"""
    warnings.warn(
        "require_active_event is deprecated, use require_editable_event",
        DeprecationWarning,
        stacklevel=2,
    )
    require_editable_event(db, event_id)


def mark_stale_if_in_review(db: Session, event_id: str) -> bool:
    """
    Flag the settlement plan as stale if the event is in review.

    Called after a successful expense or group edit. Approvals are refused
    until the plan is regenerated.

    Returns:
        True if the event is (now) marked stale
    """
    event = get_event(db, event_id)
    if not event or EventStatus(event.status) != EventStatus.review:
        return False

    def _mark(event: Event) -> bool:
        if EventStatus(event.status) != EventStatus.review:
            return False
        if not event.settlement_stale:
            event.settlement_stale = True
            logger.info(f"Settlement plan for event {event_id} marked stale")
        return True

    return update_event_state(db, event_id, _mark)


def close_event(db: Session, event_id: str, user_id: str) -> Event:
    """Close a settled event (admin only)"""

    def _close(event: Event) -> Event:
        if not is_event_admin(event, user_id):
            raise HTTPException(status_code=403, detail="Forbidden: Only admins can close the event")
        if EventStatus(event.status) != EventStatus.settled:
            raise HTTPException(
                status_code=409,
                detail=f"Cannot close event: event is {EventStatus(event.status).value}, expected settled"
            )
        transition_event_status(event, EventStatus.closed)
        return event

    return update_event_state(db, event_id, _close)
