import enum
import uuid
from sqlalchemy.sql import func
from sqlalchemy import Column, String, DateTime, DECIMAL, Boolean, Enum, ForeignKey, Integer, JSON
from sqlalchemy.orm import relationship
from tabsettle.db.database import Base


class SplitType(str, enum.Enum):
    equal = "equal"
    ratio = "ratio"
    custom = "custom"


class EntityType(str, enum.Enum):
    user = "user"
    group = "group"


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    event_id = Column(String, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    paid_by = Column(String, nullable=False, index=True)  # Reference to user service
    is_private = Column(Boolean, nullable=False, default=False)
    split_type = Column(Enum(SplitType), nullable=False, default=SplitType.equal)
    paid_on_behalf_of = Column(JSON, nullable=False, default=list)  # [{"entityType": ..., "entityId": ...}]
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    splits = relationship(
        "ExpenseSplit",
        cascade="all, delete-orphan",
        order_by="ExpenseSplit.position",
        lazy="selectin",
    )


class ExpenseSplit(Base):
    __tablename__ = "expense_splits"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    expense_id = Column(String, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    entity_type = Column(Enum(EntityType), nullable=False, default=EntityType.user)
    entity_id = Column(String, nullable=False, index=True)
    amount = Column(DECIMAL(12, 2), nullable=False)
    ratio = Column(DECIMAL(12, 4), nullable=True)
