from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from tabsettle.models.expenses import EntityType, SplitType


class EntityRef(BaseModel):
    entityType: EntityType
    entityId: str


class ExpenseSplitBase(BaseModel):
    entity_type: EntityType = EntityType.user
    entity_id: str
    amount: Decimal = Field(Decimal('0'), ge=0)
    ratio: Optional[Decimal] = Field(None, ge=0)


class ExpenseSplitCreate(ExpenseSplitBase):
    pass


class ExpenseSplitOut(ExpenseSplitBase):
    model_config = ConfigDict(from_attributes=True)

    id: str


class ExpenseBase(BaseModel):
    title: str = Field(..., max_length=200)
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    is_private: bool = False
    split_type: SplitType = SplitType.equal


class ExpenseCreate(ExpenseBase):
    splits: List[ExpenseSplitCreate] = []
    paid_on_behalf_of: List[EntityRef] = []


class ExpenseUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    amount: Optional[Decimal] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    is_private: Optional[bool] = None
    split_type: Optional[SplitType] = None
    splits: Optional[List[ExpenseSplitCreate]] = None
    paid_on_behalf_of: Optional[List[EntityRef]] = None


class ExpenseOut(ExpenseBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    paid_by: str
    paid_on_behalf_of: List[EntityRef] = []
    splits: List[ExpenseSplitOut] = []
    created_at: datetime
