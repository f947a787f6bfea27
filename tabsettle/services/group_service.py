from sqlalchemy.orm import Session
from sqlalchemy import and_
from fastapi import HTTPException
from typing import Dict, Iterable, List, Optional
from tabsettle.models.groups import Group, GroupMember
from tabsettle.schemas.group_schema import GroupCreate
from tabsettle.services.event_service import get_event_or_404
from tabsettle.services.event_status_service import require_editable_event, mark_stale_if_in_review


def get_group(db: Session, group_id: str) -> Optional[Group]:
    """Get a group by ID"""
    return db.query(Group).filter(Group.id == group_id).first()


def get_event_groups(db: Session, event_id: str) -> List[Group]:
    """Get all groups registered for an event"""
    return db.query(Group).filter(Group.event_id == event_id).order_by(Group.created_at, Group.id).all()


def build_user_to_group_map(groups: Iterable[Group]) -> Dict[str, str]:
    """
    Map every group member to their group.

    A user may belong to at most one group per event. Overlapping
    membership would make the user's shares ambiguous, so it is rejected
    instead of letting one group silently win.
    """
    user_to_group: Dict[str, str] = {}
    for group in groups:
        for member_id in group.member_ids:
            existing = user_to_group.get(member_id)
            if existing and existing != group.id:
                raise HTTPException(
                    status_code=422,
                    detail=f"User {member_id} belongs to more than one group in this event"
                )
            user_to_group[member_id] = group.id
    return user_to_group


def is_group_representative(group: Group, user_id: str) -> bool:
    """The representative and the payer may both act for the group"""
    return user_id in (group.representative, group.payer_user_id)


def create_group(db: Session, event_id: str, group_data: GroupCreate, created_by: str) -> Group:
    """Create a group that acts as one financial entity within an event"""
    get_event_or_404(db, event_id)
    require_editable_event(db, event_id)

    member_ids = list(dict.fromkeys(group_data.member_ids))
    if group_data.payer_user_id not in member_ids:
        raise HTTPException(status_code=422, detail="Payer must be a member of the group")

    representative = group_data.representative or member_ids[0]
    if representative not in member_ids:
        raise HTTPException(status_code=422, detail="Representative must be a member of the group")

    _ensure_not_grouped(db, event_id, member_ids)

    group = Group(
        event_id=event_id,
        name=group_data.name,
        created_by=created_by,
        representative=representative,
        payer_user_id=group_data.payer_user_id,
        members=[GroupMember(user_id=member_id) for member_id in member_ids]
    )
    db.add(group)
    db.commit()
    db.refresh(group)

    mark_stale_if_in_review(db, event_id)
    return group


def add_member_to_group(db: Session, group_id: str, user_id: str, requester_id: str) -> Group:
    """Add a member to a group (group creator or representative only)"""
    group = get_group(db, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")

    if requester_id not in (group.created_by, group.representative):
        raise HTTPException(status_code=403, detail="Forbidden: Only the group creator or representative can add members")

    require_editable_event(db, group.event_id)

    if user_id in group.member_ids:
        raise HTTPException(status_code=422, detail="User is already a member of this group")
    _ensure_not_grouped(db, group.event_id, [user_id])

    group.members.append(GroupMember(user_id=user_id))
    db.commit()
    db.refresh(group)

    mark_stale_if_in_review(db, group.event_id)
    return group


def remove_member_from_group(db: Session, group_id: str, user_id: str, remover_id: str) -> Group:
    """Remove a member from a group"""
    group = get_group(db, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")

    member = db.query(GroupMember).filter(
        and_(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
    ).first()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")

    # Creator can remove others, users can remove themselves
    if user_id != remover_id and remover_id != group.created_by:
        raise HTTPException(status_code=403, detail="Forbidden: Only the group creator can remove other members")

    if user_id in (group.representative, group.payer_user_id):
        raise HTTPException(status_code=422, detail="Reassign the representative and payer before removing them")

    require_editable_event(db, group.event_id)

    group.members.remove(member)
    db.commit()
    db.refresh(group)

    mark_stale_if_in_review(db, group.event_id)
    return group


def _ensure_not_grouped(db: Session, event_id: str, user_ids: List[str]) -> None:
    grouped = db.query(GroupMember.user_id).join(Group, GroupMember.group_id == Group.id).filter(
        and_(Group.event_id == event_id, GroupMember.user_id.in_(user_ids))
    ).all()
    if grouped:
        raise HTTPException(
            status_code=422,
            detail=f"User {grouped[0][0]} already belongs to a group in this event"
        )
