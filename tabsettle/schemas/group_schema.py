from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime


class GroupBase(BaseModel):
    name: str = Field(..., max_length=100)


class GroupCreate(GroupBase):
    member_ids: List[str] = Field(..., min_length=1)
    payer_user_id: str
    representative: Optional[str] = None


class GroupOut(GroupBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    created_by: str
    representative: str
    payer_user_id: str
    member_ids: List[str] = []
    created_at: datetime


class GroupMemberCreate(BaseModel):
    user_id: str
