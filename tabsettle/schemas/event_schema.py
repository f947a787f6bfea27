from pydantic import BaseModel
from typing import Optional
from tabsettle.models.events import EventStatus


class EventLockStatus(BaseModel):
    event_id: str
    locked: bool
    lock_status: Optional[EventStatus] = None


class EventStatusOut(BaseModel):
    event_id: str
    status: EventStatus
