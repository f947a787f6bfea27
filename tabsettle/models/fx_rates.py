import uuid
from sqlalchemy.sql import func
from sqlalchemy import Column, String, DateTime, Date, JSON, UniqueConstraint
from tabsettle.db.database import Base


class FxRateCache(Base):
    """Daily end-of-day rate set for one base currency"""
    __tablename__ = "fx_rate_cache"
    __table_args__ = (UniqueConstraint("base", "date", name="uq_fx_rate_cache_base_date"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    base = Column(String(3), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    rates = Column(JSON, nullable=False)  # {"INR": 83.12, "EUR": 0.92, ...}
    fetched_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
