from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal
from tabsettle.models.expenses import EntityType
from tabsettle.models.settlements import SettlementStatus


class Balance(BaseModel):
    entity_id: str
    entity_type: EntityType
    amount: Decimal  # positive = owed money, negative = owes money


class PlannedSettlement(BaseModel):
    event_id: str
    from_entity_id: str
    from_entity_type: EntityType
    to_entity_id: str
    to_entity_type: EntityType
    from_user_id: str
    to_user_id: str
    amount: Decimal
    currency: str
    settlement_amount: Optional[Decimal] = None
    settlement_currency: Optional[str] = None
    fx_rate: Optional[Decimal] = None


class SettlementOut(PlannedSettlement):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: SettlementStatus
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    checkout_url: Optional[str] = None
    failure_reason: Optional[str] = None
    retry_count: int = 0
    initiated_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SettlementPlan(BaseModel):
    event_id: str
    settlements: List[PlannedSettlement] = []
    total_transactions: int = 0
    total_amount: Decimal = Decimal('0.00')


class SettlementPlanOut(BaseModel):
    event_id: str
    settlements: List[SettlementOut] = []
    total_transactions: int = 0
    total_amount: Decimal = Decimal('0.00')


class SettlementApproval(BaseModel):
    approved: bool = False
    entityType: EntityType
    displayName: str
    approvedAt: Optional[str] = None  # ISO-8601, stored verbatim in the approvals map


class ApprovalResult(BaseModel):
    approvals: Dict[str, SettlementApproval]
    all_approved: bool


class SettlementReview(ApprovalResult):
    status: str
    stale: bool


class PendingTotal(BaseModel):
    event_id: str
    pending_total: Decimal


class InitiatePaymentRequest(BaseModel):
    use_real_gateway: bool = False


class RejectPaymentRequest(BaseModel):
    reason: Optional[str] = None
