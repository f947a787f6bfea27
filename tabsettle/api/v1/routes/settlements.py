from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from tabsettle.db.database import get_db
from tabsettle.api.v1.deps import get_current_user_id
from tabsettle.services.payment_service import (
    initiate_payment, retry_payment, approve_payment, reject_payment, mark_paid_by_payee
)
from tabsettle.schemas.settlement_schema import SettlementOut, InitiatePaymentRequest, RejectPaymentRequest

router = APIRouter(prefix="/settlements", tags=["settlements"])


@router.post("/{settlement_id}/initiate", response_model=SettlementOut)
def initiate_settlement_payment(
    settlement_id: str,
    request: Optional[InitiatePaymentRequest] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Start paying a settlement (payer only)"""
    request = request or InitiatePaymentRequest()
    return initiate_payment(db, settlement_id, user_id, use_real_gateway=request.use_real_gateway)


@router.post("/{settlement_id}/retry", response_model=SettlementOut)
def retry_settlement_payment(
    settlement_id: str,
    request: Optional[InitiatePaymentRequest] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Retry a failed or stuck payment (payer only)"""
    request = request or InitiatePaymentRequest()
    return retry_payment(db, settlement_id, user_id, use_real_gateway=request.use_real_gateway)


@router.post("/{settlement_id}/approve", response_model=SettlementOut)
def approve_settlement_payment(
    settlement_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Confirm an initiated payment was received (payee only)"""
    return approve_payment(db, settlement_id, user_id)


@router.post("/{settlement_id}/reject", response_model=SettlementOut)
def reject_settlement_payment(
    settlement_id: str,
    request: Optional[RejectPaymentRequest] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Reject an initiated payment (payee only)"""
    reason = request.reason if request else None
    return reject_payment(db, settlement_id, user_id, reason)


@router.post("/{settlement_id}/mark-paid", response_model=SettlementOut)
def mark_settlement_paid(
    settlement_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Confirm a payment made outside the app (payee only)"""
    return mark_paid_by_payee(db, settlement_id, user_id)
