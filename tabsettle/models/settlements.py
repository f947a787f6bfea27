import enum
import uuid
from sqlalchemy.sql import func
from sqlalchemy import Column, String, DateTime, DECIMAL, Enum, ForeignKey, Integer, Text
from tabsettle.db.database import Base
from tabsettle.models.expenses import EntityType


class SettlementStatus(str, enum.Enum):
    pending = "pending"
    initiated = "initiated"
    failed = "failed"
    completed = "completed"


class Settlement(Base):
    __tablename__ = "settlements"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    event_id = Column(String, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    from_entity_id = Column(String, nullable=False, index=True)
    from_entity_type = Column(Enum(EntityType), nullable=False)
    to_entity_id = Column(String, nullable=False, index=True)
    to_entity_type = Column(Enum(EntityType), nullable=False)
    from_user_id = Column(String, nullable=False, index=True)  # Human who pays
    to_user_id = Column(String, nullable=False, index=True)  # Human who receives
    amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    settlement_amount = Column(DECIMAL(12, 2), nullable=True)
    settlement_currency = Column(String(3), nullable=True)
    fx_rate = Column(DECIMAL(18, 6), nullable=True)
    position = Column(Integer, nullable=False, default=0)  # Order within the plan
    status = Column(Enum(SettlementStatus), nullable=False, default=SettlementStatus.pending, index=True)
    payment_method = Column(String(50), nullable=True)
    payment_id = Column(String, nullable=True)
    checkout_url = Column(String, nullable=True)
    failure_reason = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    initiated_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
