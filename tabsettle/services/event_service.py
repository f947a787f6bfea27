from sqlalchemy.orm import Session
from sqlalchemy import and_
from fastapi import HTTPException
from typing import List, Optional
from tabsettle.models.events import Event, EventParticipant, ParticipantStatus


def get_event(db: Session, event_id: str) -> Optional[Event]:
    """Get an event by ID"""
    return db.query(Event).filter(Event.id == event_id).first()


def get_event_or_404(db: Session, event_id: str) -> Event:
    event = get_event(db, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def is_event_admin(event: Event, user_id: str) -> bool:
    """Check if user created the event or is listed as an admin"""
    return event.created_by == user_id or user_id in (event.admins or [])


def get_participants(db: Session, event_id: str, status: Optional[ParticipantStatus] = None) -> List[EventParticipant]:
    """Get participants of an event, optionally filtered by invitation status"""
    query = db.query(EventParticipant).filter(EventParticipant.event_id == event_id)
    if status is not None:
        query = query.filter(EventParticipant.status == status)
    return query.order_by(EventParticipant.joined_at, EventParticipant.id).all()


def is_participant(db: Session, event_id: str, user_id: str) -> bool:
    """Check if user is an accepted participant of the event"""
    participant = db.query(EventParticipant).filter(
        and_(
            EventParticipant.event_id == event_id,
            EventParticipant.user_id == user_id,
            EventParticipant.status == ParticipantStatus.accepted
        )
    ).first()
    return participant is not None
