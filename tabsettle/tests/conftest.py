"""
Pytest configuration and fixtures for tabsettle tests.
"""
import os

# Settings are read at import time; keep tests off the broker and the on-disk database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RABBITMQ_ENABLED", "false")

import pytest
from decimal import Decimal
from typing import Dict, List, Sequence
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tabsettle.core.config import settings
from tabsettle.db.database import Base
from tabsettle.models.events import Event, EventParticipant, ParticipantStatus
from tabsettle.models.expenses import EntityType, SplitType
from tabsettle.models.fx_rates import FxRateCache  # noqa: F401  registers the table
from tabsettle.models.settlements import Settlement  # noqa: F401
from tabsettle.schemas.expense_schema import ExpenseCreate, ExpenseSplitCreate
from tabsettle.schemas.group_schema import GroupCreate
from tabsettle.services.expense_service import create_expense
from tabsettle.services.group_service import create_group


@pytest.fixture(autouse=True)
def disable_broker(monkeypatch):
    """Never publish lifecycle messages from tests."""
    monkeypatch.setattr(settings, "RABBITMQ_ENABLED", False)


@pytest.fixture
def engine():
    """In-memory SQLite engine shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Database session configured like the application's SessionLocal."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_event(db_session):
    """Create an event with accepted participants; the first participant is the admin."""
    def _make(participants: Sequence[str] = ("U1", "U2"), currency: str = "USD", **kwargs) -> Event:
        admin = participants[0]
        admins = kwargs.pop("admins", [admin])
        event = Event(
            name="Goa Trip",
            created_by=admin,
            admins=admins,
            currency=currency,
            **kwargs
        )
        db_session.add(event)
        db_session.flush()
        for user_id in participants:
            db_session.add(EventParticipant(
                event_id=event.id,
                user_id=user_id,
                display_name=f"User {user_id}",
                status=ParticipantStatus.accepted
            ))
        db_session.commit()
        return event
    return _make


@pytest.fixture
def add_expense(db_session):
    """Record an expense split equally (or by custom amounts) through the expense service."""
    def _add(event: Event, paid_by: str, amount: str, split_between: Sequence[str] = (), custom: Dict[str, str] = None, **kwargs):
        if custom:
            data = ExpenseCreate(
                title="Custom expense",
                amount=Decimal(amount),
                currency=event.currency,
                split_type=SplitType.custom,
                splits=[ExpenseSplitCreate(entity_id=user_id, amount=Decimal(share)) for user_id, share in custom.items()],
                **kwargs
            )
        else:
            data = ExpenseCreate(
                title="Shared expense",
                amount=Decimal(amount),
                currency=event.currency,
                split_type=SplitType.equal,
                splits=[ExpenseSplitCreate(entity_id=user_id) for user_id in split_between],
                **kwargs
            )
        return create_expense(db_session, event.id, data, paid_by)
    return _add


@pytest.fixture
def add_group(db_session):
    """Create a group through the group service."""
    def _add(event: Event, name: str, member_ids: List[str], payer_user_id: str, representative: str = None):
        data = GroupCreate(
            name=name,
            member_ids=member_ids,
            payer_user_id=payer_user_id,
            representative=representative
        )
        return create_group(db_session, event.id, data, event.created_by)
    return _add


def entity_ref(entity_id: str, entity_type: EntityType = EntityType.user) -> Dict[str, str]:
    return {"entityType": entity_type.value, "entityId": entity_id}


def verify_plan_settles_balances(balances: Dict[str, int], transfers: List[Dict]) -> None:
    """
    Helper to verify a plan moves every entity to exactly zero.

    Balances and transfer amounts are integer cents:
    final = balance - received + paid
    """
    received: Dict[str, int] = {}
    for transfer in transfers:
        received[transfer["to"]] = received.get(transfer["to"], 0) + transfer["amount"]
        received[transfer["from"]] = received.get(transfer["from"], 0) - transfer["amount"]

    for entity_id, balance in balances.items():
        final = balance - received.get(entity_id, 0)
        assert final == 0, f"Entity {entity_id} not settled: initial={balance}, final={final}"
