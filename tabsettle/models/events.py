import enum
import uuid
from sqlalchemy.sql import func
from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, Boolean, Integer, JSON
from tabsettle.db.database import Base


class EventStatus(str, enum.Enum):
    active = "active"
    review = "review"
    payment = "payment"
    settled = "settled"
    closed = "closed"


class FxRateMode(str, enum.Enum):
    predefined = "predefined"
    eod = "eod"


class ParticipantStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class Event(Base):
    __tablename__ = "events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    created_by = Column(String, nullable=False, index=True)  # Reference to user service
    admins = Column(JSON, nullable=False, default=list)
    currency = Column(String(3), nullable=False)
    settlement_currency = Column(String(3), nullable=True)  # None = settle in expense currency
    fx_rate_mode = Column(Enum(FxRateMode), nullable=False, default=FxRateMode.eod)
    predefined_fx_rates = Column(JSON, nullable=False, default=dict)  # {"USD_INR": 83.1}
    status = Column(Enum(EventStatus), nullable=False, default=EventStatus.active, index=True)
    settlement_approvals = Column(JSON, nullable=False, default=dict)
    settlement_stale = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Every UPDATE is conditional on the version that was read
    __mapper_args__ = {"version_id_col": version}


class EventParticipant(Base):
    __tablename__ = "event_participants"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    event_id = Column(String, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)  # Reference to user service
    display_name = Column(String(100), nullable=True)
    role = Column(String(20), nullable=False, default="member")  # admin, member
    status = Column(Enum(ParticipantStatus), nullable=False, default=ParticipantStatus.accepted)
    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
