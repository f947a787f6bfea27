import logging
from sqlalchemy.orm import Session
from fastapi import HTTPException
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from tabsettle.models.events import Event, EventStatus, ParticipantStatus
from tabsettle.models.expenses import EntityType
from tabsettle.models.groups import Group
from tabsettle.models.settlements import Settlement, SettlementStatus
from tabsettle.rabbitmq.producer import publish_event
from tabsettle.schemas.fx_schema import FxRate
from tabsettle.schemas.settlement_schema import (
    Balance, PlannedSettlement, SettlementPlan, SettlementPlanOut, SettlementOut
)
from tabsettle.services.approval_service import build_approvals_map, all_entities_approved
from tabsettle.services.balance_service import compute_entity_balances
from tabsettle.services.event_service import get_event_or_404, get_participants, is_event_admin
from tabsettle.services.event_status_service import update_event_state, transition_event_status
from tabsettle.services.expense_service import get_event_expenses
from tabsettle.services.fx_rate_service import get_rate, convert
from tabsettle.services.group_service import get_event_groups, is_group_representative
from tabsettle.utils.min_cash_flow import min_cash_flow
from tabsettle.utils.money import to_cents, from_cents

logger = logging.getLogger(__name__)


def calculate_settlement_plan(
    balances: List[Balance],
    event_id: str,
    currency: str,
    groups: Iterable[Group] = ()
) -> SettlementPlan:
    """
    Turn entity balances into settlement transactions.

    Uses the greedy Min-Cash-Flow pairing (largest debtor with largest
    creditor). Group entities pay and receive through their payer, which is
    recorded as from_user_id / to_user_id.

    Args:
        balances: Entity balances (positive = owed, negative = owes)
        event_id: Event the plan belongs to
        currency: Ledger currency of the event
        groups: Groups of the event, used to resolve group payers

    Returns:
        SettlementPlan with unsaved PlannedSettlement items
    """
    payer_by_group = {group.id: group.payer_user_id for group in groups}
    entity_types = {balance.entity_id: EntityType(balance.entity_type) for balance in balances}

    def human(entity_id: str) -> str:
        if entity_types[entity_id] == EntityType.group:
            return payer_by_group.get(entity_id, entity_id)
        return entity_id

    transfers = min_cash_flow({balance.entity_id: to_cents(balance.amount) for balance in balances})

    settlements = [
        PlannedSettlement(
            event_id=event_id,
            from_entity_id=transfer["from"],
            from_entity_type=entity_types[transfer["from"]],
            to_entity_id=transfer["to"],
            to_entity_type=entity_types[transfer["to"]],
            from_user_id=human(transfer["from"]),
            to_user_id=human(transfer["to"]),
            amount=from_cents(transfer["amount"]),
            currency=currency
        )
        for transfer in transfers
    ]

    return SettlementPlan(
        event_id=event_id,
        settlements=settlements,
        total_transactions=len(settlements),
        total_amount=from_cents(sum(transfer["amount"] for transfer in transfers))
    )


def resolve_fx_rate(db: Session, event: Event) -> Optional[FxRate]:
    """The conversion rate for the event, or None when it settles in its own currency"""
    if not event.settlement_currency or event.settlement_currency.upper() == event.currency.upper():
        return None
    return get_rate(
        db,
        event.currency,
        event.settlement_currency,
        event.predefined_fx_rates or {},
        event.fx_rate_mode
    )


def apply_fx_conversion(plan: SettlementPlan, fx_rate: FxRate) -> SettlementPlan:
    """Add settlement-currency amounts; amount/currency stay the ledger values"""
    for settlement in plan.settlements:
        settlement.settlement_amount = convert(settlement.amount, fx_rate.rate)
        settlement.settlement_currency = fx_rate.to_currency
        settlement.fx_rate = fx_rate.rate
    return plan


def entity_nets(settlements: Iterable[Settlement]) -> Dict[str, int]:
    """Net cents each entity receives (in - out) under a persisted plan"""
    nets: Dict[str, int] = {}
    for settlement in settlements:
        cents = to_cents(settlement.amount)
        nets[settlement.to_entity_id] = nets.get(settlement.to_entity_id, 0) + cents
        nets[settlement.from_entity_id] = nets.get(settlement.from_entity_id, 0) - cents
    return nets


def generate_settlement(db: Session, event_id: str, user_id: str) -> SettlementPlanOut:
    """Generate and persist the settlement plan for an event (admin only)"""

    def _generate(event: Event) -> List[Settlement]:
        if not is_event_admin(event, user_id):
            raise HTTPException(status_code=403, detail="Forbidden: Only admins can generate settlements")

        status = EventStatus(event.status)
        if status not in (EventStatus.active, EventStatus.review):
            raise HTTPException(
                status_code=409,
                detail=f"Cannot generate settlement: event is {status.value}"
            )

        groups, rows = _replace_plan(db, event)
        if not rows:
            event.settlement_approvals = {}
            transition_event_status(event, EventStatus.settled)
        else:
            event.settlement_approvals = build_approvals_map(
                groups, get_participants(db, event.id, ParticipantStatus.accepted)
            )
            transition_event_status(event, EventStatus.review)
        event.settlement_stale = False
        return rows

    rows = update_event_state(db, event_id, _generate)
    logger.info(f"Generated settlement plan for event {event_id} with {len(rows)} transactions")
    return _publish_plan(event_id, rows)


def regenerate_settlement(db: Session, event_id: str, user_id: str) -> SettlementPlanOut:
    """
    Recompute the plan of an event under review.

    Entities whose net position did not change keep their approval
    (including its timestamp); everyone else has to approve again.
    """

    def _regenerate(event: Event) -> List[Settlement]:
        status = EventStatus(event.status)
        if status != EventStatus.review:
            raise HTTPException(
                status_code=409,
                detail=f"Cannot regenerate settlement: event is {status.value}, expected review"
            )

        groups = get_event_groups(db, event.id)
        if not is_event_admin(event, user_id) and not any(is_group_representative(g, user_id) for g in groups):
            raise HTTPException(
                status_code=403,
                detail="Forbidden: Only admins or group representatives can regenerate settlements"
            )

        old_nets = entity_nets(get_event_settlements(db, event.id))
        old_approvals = dict(event.settlement_approvals or {})

        groups, rows = _replace_plan(db, event)
        new_nets = entity_nets(rows)
        affected = {
            entity_id for entity_id in old_nets.keys() | new_nets.keys()
            if old_nets.get(entity_id, 0) != new_nets.get(entity_id, 0)
        }

        if not rows:
            event.settlement_approvals = {}
            transition_event_status(event, EventStatus.settled)
        else:
            approvals = build_approvals_map(groups, get_participants(db, event.id, ParticipantStatus.accepted))
            for entity_id in approvals:
                previous = old_approvals.get(entity_id)
                if entity_id not in affected and previous and previous.get("approved"):
                    approvals[entity_id] = dict(previous)
            event.settlement_approvals = approvals
            if all_entities_approved(approvals):
                transition_event_status(event, EventStatus.payment)
            else:
                transition_event_status(event, EventStatus.review)
        event.settlement_stale = False

        logger.info(f"Regenerated settlement for event {event.id}; affected entities: {sorted(affected)}")
        return rows

    rows = update_event_state(db, event_id, _regenerate)
    return _publish_plan(event_id, rows)


def get_event_settlements(db: Session, event_id: str) -> List[Settlement]:
    """Get the persisted settlement transactions of an event in plan order"""
    return db.query(Settlement).filter(Settlement.event_id == event_id).order_by(Settlement.position).all()


def get_pending_settlement_total(db: Session, event_id: str) -> Decimal:
    """Sum of transactions that are still owed (anything not completed)"""
    get_event_or_404(db, event_id)
    cents = sum(
        to_cents(settlement.amount)
        for settlement in get_event_settlements(db, event_id)
        if SettlementStatus(settlement.status) != SettlementStatus.completed
    )
    return from_cents(cents)


def _replace_plan(db: Session, event: Event):
    """
    Recompute the plan and swap the persisted rows.

    Runs inside the caller's unit of work, so the delete and the inserts
    commit together with the event update.
    """
    groups = get_event_groups(db, event.id)
    balances = compute_entity_balances(get_event_expenses(db, event.id), groups)
    plan = calculate_settlement_plan(balances, event.id, event.currency, groups)

    if plan.settlements:
        fx_rate = resolve_fx_rate(db, event)
        if fx_rate:
            apply_fx_conversion(plan, fx_rate)

    db.query(Settlement).filter(Settlement.event_id == event.id).delete()

    rows = [
        Settlement(
            position=position,
            status=SettlementStatus.pending,
            retry_count=0,
            **planned.model_dump()
        )
        for position, planned in enumerate(plan.settlements)
    ]
    db.add_all(rows)
    return groups, rows


def _publish_plan(event_id: str, rows: List[Settlement]) -> SettlementPlanOut:
    settlements = [SettlementOut.model_validate(row) for row in rows]
    plan = SettlementPlanOut(
        event_id=event_id,
        settlements=settlements,
        total_transactions=len(settlements),
        total_amount=from_cents(sum(to_cents(s.amount) for s in settlements))
    )
    publish_event("settlement.generated", {
        "event_id": event_id,
        "total_transactions": plan.total_transactions,
        "total_amount": str(plan.total_amount),
    })
    return plan
