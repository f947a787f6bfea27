from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from tabsettle.db.database import get_db
from tabsettle.api.v1.deps import get_current_user_id
from tabsettle.services.group_service import get_group, add_member_to_group, remove_member_from_group
from tabsettle.schemas.group_schema import GroupOut, GroupMemberCreate

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("/{group_id}", response_model=GroupOut)
def get_group_details(
    group_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    group = get_group(db, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


@router.post("/{group_id}/members", response_model=GroupOut)
def add_group_member(
    group_id: str,
    member_data: GroupMemberCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Add a member to a group (creator or representative only)"""
    return add_member_to_group(db, group_id, member_data.user_id, user_id)


@router.delete("/{group_id}/members/{member_user_id}", response_model=GroupOut)
def remove_group_member(
    group_id: str,
    member_user_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Remove a member from a group (creator, or the member themselves)"""
    return remove_member_from_group(db, group_id, member_user_id, user_id)
