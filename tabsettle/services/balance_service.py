from sqlalchemy.orm import Session
from typing import Dict, Iterable, List, Tuple
from tabsettle.models.expenses import Expense, EntityType
from tabsettle.models.groups import Group
from tabsettle.schemas.settlement_schema import Balance
from tabsettle.services.event_service import get_event_or_404
from tabsettle.services.expense_service import get_event_expenses
from tabsettle.services.group_service import get_event_groups, build_user_to_group_map
from tabsettle.utils.money import to_cents, from_cents


def compute_entity_cents(expenses: Iterable[Expense], groups: Iterable[Group]) -> Dict[str, Tuple[EntityType, int]]:
    """
    Net position of every financial entity in cents.

    Groups are single entities: a member paying credits the group and a
    split on a member debits the group. Private expenses are ignored.

    When an expense was paid on behalf of others, the payer's own entity
    takes no share even if a split for it slipped through, so the payer is
    owed the full amount.

    Returns:
        Dictionary mapping entity_id -> (entity_type, net cents),
        insertion-ordered by first appearance
    """
    user_to_group = build_user_to_group_map(groups)
    balances: Dict[str, Tuple[EntityType, int]] = {}

    def resolve(entity_type: EntityType, entity_id: str) -> Tuple[EntityType, str]:
        if EntityType(entity_type) == EntityType.group:
            return EntityType.group, entity_id
        group_id = user_to_group.get(entity_id)
        if group_id:
            return EntityType.group, group_id
        return EntityType.user, entity_id

    def add(entity: Tuple[EntityType, str], cents: int) -> None:
        entity_type, entity_id = entity
        _, current = balances.get(entity_id, (entity_type, 0))
        balances[entity_id] = (entity_type, current + cents)

    for expense in expenses:
        if expense.is_private:
            continue

        payer = resolve(EntityType.user, expense.paid_by)
        add(payer, to_cents(expense.amount))

        on_behalf = bool(expense.paid_on_behalf_of)
        for split in expense.splits:
            debtor = resolve(split.entity_type, split.entity_id)
            if on_behalf and debtor[1] == payer[1]:
                continue
            add(debtor, -to_cents(split.amount))

    return balances


def compute_entity_balances(expenses: Iterable[Expense], groups: Iterable[Group]) -> List[Balance]:
    """Entity balances with settled (zero) entities dropped"""
    return [
        Balance(entity_id=entity_id, entity_type=entity_type, amount=from_cents(cents))
        for entity_id, (entity_type, cents) in compute_entity_cents(expenses, groups).items()
        if cents != 0
    ]


def calculate_entity_balances(db: Session, event_id: str) -> List[Balance]:
    """Calculate entity-level balances for an event"""
    get_event_or_404(db, event_id)
    return compute_entity_balances(get_event_expenses(db, event_id), get_event_groups(db, event_id))
