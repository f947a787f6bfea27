import uuid
from sqlalchemy.sql import func
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from tabsettle.db.database import Base


class Group(Base):
    __tablename__ = "groups"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    event_id = Column(String, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    created_by = Column(String, nullable=False)  # Reference to user service
    representative = Column(String, nullable=False)  # Member who speaks for the group
    payer_user_id = Column(String, nullable=False)  # Member who sends/receives money
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    members = relationship(
        "GroupMember",
        cascade="all, delete-orphan",
        order_by="GroupMember.joined_at",
        lazy="selectin",
    )

    @property
    def member_ids(self):
        return [member.user_id for member in self.members]


class GroupMember(Base):
    __tablename__ = "group_members"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    group_id = Column(String, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)  # Reference to user service
    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
