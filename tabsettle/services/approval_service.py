"""
Settlement review and approval.

Every financial entity of an event signs off on the generated plan before
any money moves: one entry per group and one per accepted participant who
is not in a group, whether or not they owe anything.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List
from sqlalchemy.orm import Session
from fastapi import HTTPException
from tabsettle.models.events import Event, EventParticipant, EventStatus
from tabsettle.models.expenses import EntityType
from tabsettle.models.groups import Group
from tabsettle.schemas.settlement_schema import ApprovalResult, SettlementReview
from tabsettle.services.event_service import get_event_or_404
from tabsettle.services.event_status_service import update_event_state, transition_event_status
from tabsettle.services.group_service import get_event_groups, is_group_representative

logger = logging.getLogger(__name__)


def build_approvals_map(groups: Iterable[Group], participants: Iterable[EventParticipant]) -> Dict[str, dict]:
    """Seed an unapproved entry for every group and every ungrouped accepted participant"""
    approvals: Dict[str, dict] = {}
    grouped_users = set()

    for group in groups:
        grouped_users.update(group.member_ids)
        approvals[group.id] = {
            "approved": False,
            "entityType": EntityType.group.value,
            "displayName": group.name,
            "approvedAt": None,
        }

    for participant in participants:
        if participant.user_id in grouped_users:
            continue
        approvals[participant.user_id] = {
            "approved": False,
            "entityType": EntityType.user.value,
            "displayName": participant.display_name or participant.user_id,
            "approvedAt": None,
        }

    return approvals


def all_entities_approved(approvals: Dict[str, dict]) -> bool:
    return bool(approvals) and all(entry.get("approved") for entry in approvals.values())


def resolve_approval_target(approvals: Dict[str, dict], groups: List[Group], user_id: str) -> str:
    """
    Decide which entity ``user_id`` is approving for.

    The caller's own pending entry comes first; otherwise the first pending
    group they represent (as representative or payer).
    """
    own = approvals.get(user_id)
    if own is not None and not own.get("approved"):
        return user_id

    represented = [
        group for group in groups
        if group.id in approvals
        and user_id in group.member_ids
        and is_group_representative(group, user_id)
    ]
    for group in represented:
        if not approvals[group.id].get("approved"):
            return group.id

    if own is not None or represented:
        raise HTTPException(status_code=409, detail="Settlement already approved")
    raise HTTPException(status_code=403, detail="Forbidden: You cannot approve the settlement on behalf of this entity")


def approve_settlement_review(db: Session, event_id: str, user_id: str) -> ApprovalResult:
    """Record the caller's approval; the event moves to payment once everyone approved"""

    def _approve(event: Event) -> ApprovalResult:
        status = EventStatus(event.status)
        if status != EventStatus.review:
            raise HTTPException(
                status_code=409,
                detail=f"Cannot approve settlement: event is {status.value}, expected review"
            )
        if event.settlement_stale:
            raise HTTPException(
                status_code=409,
                detail="Settlement plan is stale: expenses changed, regenerate the settlement before approving"
            )

        approvals = {entity_id: dict(entry) for entity_id, entry in (event.settlement_approvals or {}).items()}
        entity_id = resolve_approval_target(approvals, get_event_groups(db, event.id), user_id)
        approvals[entity_id]["approved"] = True
        approvals[entity_id]["approvedAt"] = datetime.now(timezone.utc).isoformat()
        event.settlement_approvals = approvals

        all_approved = all_entities_approved(approvals)
        if all_approved:
            transition_event_status(event, EventStatus.payment)

        logger.info(f"User {user_id} approved settlement of event {event.id} for entity {entity_id}")
        return ApprovalResult(approvals=approvals, all_approved=all_approved)

    return update_event_state(db, event_id, _approve)


def get_settlement_review(db: Session, event_id: str) -> SettlementReview:
    """Current approvals, staleness and status of an event"""
    event = get_event_or_404(db, event_id)
    approvals = event.settlement_approvals or {}
    return SettlementReview(
        approvals=approvals,
        all_approved=all_entities_approved(approvals),
        status=EventStatus(event.status).value,
        stale=bool(event.settlement_stale),
    )
