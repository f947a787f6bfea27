from sqlalchemy.orm import Session
from fastapi import HTTPException
from typing import List, Optional
from decimal import Decimal
from tabsettle.models.expenses import Expense, ExpenseSplit, SplitType
from tabsettle.schemas.expense_schema import (
    EntityRef, ExpenseCreate, ExpenseUpdate, ExpenseSplitCreate
)
from tabsettle.services.event_service import get_event_or_404, is_event_admin, is_participant
from tabsettle.services.event_status_service import require_editable_event, mark_stale_if_in_review
from tabsettle.utils.money import to_cents, from_cents


def calculate_equal_splits(amount: Decimal, entities: List[EntityRef]) -> List[ExpenseSplitCreate]:
    """
    Split an amount equally between entities.

    Cents that do not divide evenly go to the first entity, so the splits
    always add up to the amount exactly.

    Example:
        100.00 between 3 entities -> 33.34, 33.33, 33.33
    """
    if not entities:
        raise HTTPException(status_code=422, detail="At least one entity is required for an equal split")

    total = to_cents(amount)
    per_entity, remainder = divmod(total, len(entities))

    return [
        ExpenseSplitCreate(
            entity_type=entity.entityType,
            entity_id=entity.entityId,
            amount=from_cents(per_entity + remainder if index == 0 else per_entity)
        )
        for index, entity in enumerate(entities)
    ]


def calculate_ratio_splits(amount: Decimal, splits: List[ExpenseSplitCreate]) -> List[ExpenseSplitCreate]:
    """
    Split an amount by ratio.

    Each share is rounded to the cent; the rounding residue is added to the
    last share so the total is exact.

    Example:
        10000 with ratios 3:2:5 -> 3000, 2000, 5000
    """
    total_ratio = sum((Decimal(str(split.ratio or 0)) for split in splits), Decimal('0'))
    if total_ratio == 0:
        raise HTTPException(status_code=422, detail="Total ratio cannot be zero")

    total = to_cents(amount)
    shares = [
        int((Decimal(total) * Decimal(str(split.ratio or 0)) / total_ratio).to_integral_value())
        for split in splits
    ]
    shares[-1] += total - sum(shares)

    return [
        ExpenseSplitCreate(
            entity_type=split.entity_type,
            entity_id=split.entity_id,
            amount=from_cents(share),
            ratio=split.ratio
        )
        for split, share in zip(splits, shares)
    ]


def validate_splits(amount: Decimal, splits: List[ExpenseSplitCreate]) -> None:
    """Splits must add up to the expense amount to the cent"""
    if sum(to_cents(split.amount) for split in splits) != to_cents(amount):
        raise HTTPException(status_code=422, detail="Split amounts must sum to the total expense amount")


def resolve_splits(
    amount: Decimal,
    split_type: SplitType,
    splits: List[ExpenseSplitCreate],
    paid_on_behalf_of: List[EntityRef],
    is_private: bool
) -> List[ExpenseSplitCreate]:
    """Turn the requested split definition into concrete per-entity amounts"""
    if is_private:
        return []

    if split_type == SplitType.equal:
        entities = [EntityRef(entityType=s.entity_type, entityId=s.entity_id) for s in splits]
        resolved = calculate_equal_splits(amount, entities or paid_on_behalf_of)
    elif split_type == SplitType.ratio:
        if not splits:
            raise HTTPException(status_code=422, detail="Ratio splits require at least one entity")
        resolved = calculate_ratio_splits(amount, splits)
    else:
        resolved = splits

    validate_splits(amount, resolved)
    return resolved


def create_expense(db: Session, event_id: str, expense_data: ExpenseCreate, paid_by: str) -> Expense:
    """Record an expense paid by ``paid_by``"""
    get_event_or_404(db, event_id)
    require_editable_event(db, event_id)

    if not is_participant(db, event_id, paid_by):
        raise HTTPException(status_code=403, detail="Forbidden: Only event participants can create expenses")

    splits = resolve_splits(
        expense_data.amount,
        expense_data.split_type,
        expense_data.splits,
        expense_data.paid_on_behalf_of,
        expense_data.is_private
    )

    expense = Expense(
        event_id=event_id,
        title=expense_data.title,
        amount=expense_data.amount,
        currency=expense_data.currency.upper(),
        paid_by=paid_by,
        is_private=expense_data.is_private,
        split_type=expense_data.split_type,
        paid_on_behalf_of=[ref.model_dump(mode="json") for ref in expense_data.paid_on_behalf_of],
        splits=_build_split_rows(splits)
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)

    mark_stale_if_in_review(db, event_id)
    return expense


def get_expense(db: Session, expense_id: str) -> Optional[Expense]:
    """Get an expense by ID"""
    return db.query(Expense).filter(Expense.id == expense_id).first()


def get_event_expenses(db: Session, event_id: str) -> List[Expense]:
    """Get all expenses for an event"""
    return db.query(Expense).filter(Expense.event_id == event_id).order_by(Expense.created_at, Expense.id).all()


def update_expense(db: Session, expense_id: str, update_data: ExpenseUpdate, user_id: str) -> Expense:
    """Update an expense (payer or event admin only)"""
    expense = get_expense(db, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")

    event = get_event_or_404(db, expense.event_id)
    if expense.paid_by != user_id and not is_event_admin(event, user_id):
        raise HTTPException(status_code=403, detail="Forbidden: Only the payer or an admin can update this expense")

    require_editable_event(db, expense.event_id)

    changes = update_data.model_dump(exclude_unset=True)
    for field in ("title", "amount", "is_private", "split_type"):
        if field in changes:
            setattr(expense, field, changes[field])
    if "currency" in changes:
        expense.currency = changes["currency"].upper()
    if "paid_on_behalf_of" in changes:
        expense.paid_on_behalf_of = [ref.model_dump(mode="json") for ref in update_data.paid_on_behalf_of]

    if {"amount", "split_type", "splits", "paid_on_behalf_of", "is_private"} & changes.keys():
        if update_data.splits is not None:
            requested = update_data.splits
        else:
            requested = [
                ExpenseSplitCreate(
                    entity_type=split.entity_type,
                    entity_id=split.entity_id,
                    amount=split.amount,
                    ratio=split.ratio
                )
                for split in expense.splits
            ]
        splits = resolve_splits(
            Decimal(str(expense.amount)),
            SplitType(expense.split_type),
            requested,
            [EntityRef(**ref) for ref in expense.paid_on_behalf_of or []],
            expense.is_private
        )
        expense.splits = _build_split_rows(splits)

    db.commit()
    db.refresh(expense)

    mark_stale_if_in_review(db, expense.event_id)
    return expense


def delete_expense(db: Session, expense_id: str, user_id: str) -> None:
    """Delete an expense (payer or event admin only)"""
    expense = get_expense(db, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")

    event = get_event_or_404(db, expense.event_id)
    if expense.paid_by != user_id and not is_event_admin(event, user_id):
        raise HTTPException(status_code=403, detail="Forbidden: Only the payer or an admin can delete this expense")

    require_editable_event(db, expense.event_id)

    event_id = expense.event_id
    db.delete(expense)
    db.commit()

    mark_stale_if_in_review(db, event_id)


def _build_split_rows(splits: List[ExpenseSplitCreate]) -> List[ExpenseSplit]:
    return [
        ExpenseSplit(
            position=position,
            entity_type=split.entity_type,
            entity_id=split.entity_id,
            amount=split.amount,
            ratio=split.ratio
        )
        for position, split in enumerate(splits)
    ]
