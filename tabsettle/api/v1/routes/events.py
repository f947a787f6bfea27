from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List
from tabsettle.db.database import get_db
from tabsettle.api.v1.deps import get_current_user_id
from tabsettle.services.event_service import get_event_or_404, is_participant, is_event_admin
from tabsettle.services.event_status_service import get_event_lock_status, close_event
from tabsettle.services.balance_service import calculate_entity_balances
from tabsettle.services.settlement_service import (
    generate_settlement, regenerate_settlement, get_event_settlements, get_pending_settlement_total
)
from tabsettle.services.approval_service import approve_settlement_review, get_settlement_review
from tabsettle.services.expense_service import create_expense, get_event_expenses
from tabsettle.services.group_service import create_group, get_event_groups
from tabsettle.schemas.event_schema import EventLockStatus, EventStatusOut
from tabsettle.schemas.expense_schema import ExpenseCreate, ExpenseOut
from tabsettle.schemas.group_schema import GroupCreate, GroupOut
from tabsettle.schemas.settlement_schema import (
    Balance, SettlementPlanOut, SettlementOut, ApprovalResult, SettlementReview, PendingTotal
)

router = APIRouter(prefix="/events", tags=["events"])


def require_event_member(db: Session, event_id: str, user_id: str) -> None:
    event = get_event_or_404(db, event_id)
    if not is_event_admin(event, user_id) and not is_participant(db, event_id, user_id):
        raise HTTPException(status_code=403, detail="You are not a participant of this event")


@router.get("/{event_id}/balances", response_model=List[Balance])
def get_event_balances(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Net balance of every financial entity of the event"""
    require_event_member(db, event_id, user_id)
    return calculate_entity_balances(db, event_id)


@router.post("/{event_id}/settlement/generate", response_model=SettlementPlanOut)
def generate_event_settlement(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Generate the settlement plan (admin only)"""
    return generate_settlement(db, event_id, user_id)


@router.post("/{event_id}/settlement/regenerate", response_model=SettlementPlanOut)
def regenerate_event_settlement(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Recompute a stale plan, keeping approvals of unaffected entities"""
    return regenerate_settlement(db, event_id, user_id)


@router.get("/{event_id}/settlement/review", response_model=SettlementReview)
def get_event_settlement_review(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    require_event_member(db, event_id, user_id)
    return get_settlement_review(db, event_id)


@router.post("/{event_id}/settlement/approve", response_model=ApprovalResult)
def approve_event_settlement(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Approve the plan for yourself or for a group you represent"""
    return approve_settlement_review(db, event_id, user_id)


@router.get("/{event_id}/settlements", response_model=List[SettlementOut])
def list_event_settlements(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    require_event_member(db, event_id, user_id)
    return get_event_settlements(db, event_id)


@router.get("/{event_id}/settlements/pending-total", response_model=PendingTotal)
def get_event_pending_total(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    require_event_member(db, event_id, user_id)
    return PendingTotal(event_id=event_id, pending_total=get_pending_settlement_total(db, event_id))


@router.get("/{event_id}/lock-status", response_model=EventLockStatus)
def get_event_lock(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    require_event_member(db, event_id, user_id)
    lock_status = get_event_lock_status(db, event_id)
    return EventLockStatus(event_id=event_id, locked=lock_status is not None, lock_status=lock_status)


@router.post("/{event_id}/close", response_model=EventStatusOut)
def close_settled_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Close a settled event (admin only)"""
    event = close_event(db, event_id, user_id)
    return EventStatusOut(event_id=event.id, status=event.status)


@router.post("/{event_id}/expenses", response_model=ExpenseOut)
def create_event_expense(
    event_id: str,
    expense_data: ExpenseCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Record an expense paid by the current user"""
    return create_expense(db, event_id, expense_data, user_id)


@router.get("/{event_id}/expenses", response_model=List[ExpenseOut])
def list_event_expenses(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    require_event_member(db, event_id, user_id)
    return get_event_expenses(db, event_id)


@router.post("/{event_id}/groups", response_model=GroupOut)
def create_event_group(
    event_id: str,
    group_data: GroupCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Create a group acting as one financial entity"""
    return create_group(db, event_id, group_data, user_id)


@router.get("/{event_id}/groups", response_model=List[GroupOut])
def list_event_groups(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    require_event_member(db, event_id, user_id)
    return get_event_groups(db, event_id)
