from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from tabsettle.db.database import get_db
from tabsettle.api.v1.deps import get_current_user_id
from tabsettle.services.event_service import get_event_or_404, is_event_admin, is_participant
from tabsettle.services.expense_service import get_expense, update_expense, delete_expense
from tabsettle.schemas.expense_schema import ExpenseUpdate, ExpenseOut

router = APIRouter(prefix="/expenses", tags=["expenses"])


@router.get("/{expense_id}", response_model=ExpenseOut)
def get_expense_details(
    expense_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Get expense details with splits"""
    expense = get_expense(db, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")

    event = get_event_or_404(db, expense.event_id)
    if not is_event_admin(event, user_id) and not is_participant(db, event.id, user_id):
        raise HTTPException(status_code=403, detail="You are not a participant of this event")

    return expense


@router.patch("/{expense_id}", response_model=ExpenseOut)
def update_existing_expense(
    expense_id: str,
    update_data: ExpenseUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Update an expense (payer or admin only)"""
    return update_expense(db, expense_id, update_data, user_id)


@router.delete("/{expense_id}")
def delete_existing_expense(
    expense_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Delete an expense (payer or admin only)"""
    delete_expense(db, expense_id, user_id)
    return {"message": "Expense deleted successfully"}
