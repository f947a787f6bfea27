"""
Tests for the per-transaction payment lifecycle.
"""
import pytest
from decimal import Decimal
from unittest.mock import Mock
from fastapi import HTTPException

from tabsettle.models.events import EventStatus, FxRateMode
from tabsettle.models.settlements import SettlementStatus
from tabsettle.schemas.payment_schema import PaymentSession
from tabsettle.services.approval_service import approve_settlement_review
from tabsettle.services.payment_gateway import PaymentGateway
from tabsettle.services.payment_service import (
    initiate_payment, retry_payment, approve_payment, reject_payment, mark_paid_by_payee
)
from tabsettle.services.settlement_service import generate_settlement, get_event_settlements


def stub_gateway(provider="stripe", payment_id="cs_test_1", checkout_url="https://checkout.test/cs_test_1"):
    gateway = Mock(spec=PaymentGateway)
    gateway.start_payment.return_value = PaymentSession(
        provider=provider, provider_payment_id=payment_id, checkout_url=checkout_url
    )
    return gateway


@pytest.fixture
def event_in_payment(make_event, add_expense, db_session):
    """U1 paid $90 for U1, U2, U3; everyone approved, so U2 and U3 each owe U1 $30."""
    event = make_event(["U1", "U2", "U3"])
    add_expense(event, "U1", "90", ["U1", "U2", "U3"])
    generate_settlement(db_session, event.id, "U1")
    for user_id in ("U1", "U2", "U3"):
        approve_settlement_review(db_session, event.id, user_id)
    db_session.refresh(event)
    assert event.status == EventStatus.payment
    return event


def settlement_from(db_session, event, user_id):
    return next(s for s in get_event_settlements(db_session, event.id) if s.from_user_id == user_id)


class TestInitiatePayment:

    def test_mock_gateway_by_default(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")

        result = initiate_payment(db_session, settlement.id, "U2")

        assert result.status == SettlementStatus.initiated
        assert result.payment_method == "mock"
        assert result.payment_id.startswith("mock-pay-")
        assert result.initiated_at is not None
        assert result.retry_count == 0

    def test_records_provider_session(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        gateway = stub_gateway()

        result = initiate_payment(db_session, settlement.id, "U2", gateway=gateway)

        assert result.payment_method == "stripe"
        assert result.payment_id == "cs_test_1"
        assert result.checkout_url == "https://checkout.test/cs_test_1"
        provider, request = gateway.start_payment.call_args.args
        assert provider == "stripe"
        assert request.settlement_id == settlement.id
        assert request.amount == Decimal("30.00")
        assert request.currency == "USD"

    def test_inr_settlement_uses_razorpay_and_converted_amount(self, make_event, add_expense, db_session):
        event = make_event(
            ["U1", "U2"],
            settlement_currency="INR",
            fx_rate_mode=FxRateMode.predefined,
            predefined_fx_rates={"USD_INR": 83}
        )
        add_expense(event, "U1", "100", ["U1", "U2"])
        generate_settlement(db_session, event.id, "U1")
        approve_settlement_review(db_session, event.id, "U1")
        approve_settlement_review(db_session, event.id, "U2")
        settlement = settlement_from(db_session, event, "U2")
        gateway = stub_gateway(provider="razorpay", payment_id="plink_1")

        initiate_payment(db_session, settlement.id, "U2", use_real_gateway=True, gateway=gateway)

        provider, request = gateway.start_payment.call_args.args
        assert provider == "razorpay"
        assert request.amount == Decimal("4150.00")
        assert request.currency == "INR"
        assert gateway.start_payment.call_args.kwargs == {"use_real_gateway": True}

    def test_only_payer(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")

        with pytest.raises(HTTPException) as exc_info:
            initiate_payment(db_session, settlement.id, "U1")

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Forbidden: Only the payer can initiate payment"

    def test_not_twice(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        initiate_payment(db_session, settlement.id, "U2")

        with pytest.raises(HTTPException) as exc_info:
            initiate_payment(db_session, settlement.id, "U2")

        assert exc_info.value.status_code == 409

    def test_blocked_while_awaiting_approval(self, make_event, add_expense, db_session):
        event = make_event(["U1", "U2"])
        add_expense(event, "U1", "100", ["U1", "U2"])
        generate_settlement(db_session, event.id, "U1")
        settlement = settlement_from(db_session, event, "U2")

        with pytest.raises(HTTPException) as exc_info:
            initiate_payment(db_session, settlement.id, "U2")

        assert exc_info.value.status_code == 409

    def test_forces_active_event_into_payment(self, event_in_payment, db_session):
        event = event_in_payment
        event.status = EventStatus.active
        db_session.commit()
        settlement = settlement_from(db_session, event, "U2")

        initiate_payment(db_session, settlement.id, "U2")

        db_session.refresh(event)
        assert event.status == EventStatus.payment

    def test_gateway_error_leaves_row_untouched(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        gateway = Mock(spec=PaymentGateway)
        gateway.start_payment.side_effect = HTTPException(status_code=502, detail="Stripe is not configured")

        with pytest.raises(HTTPException) as exc_info:
            initiate_payment(db_session, settlement.id, "U2", gateway=gateway)

        assert exc_info.value.status_code == 502
        db_session.refresh(settlement)
        assert settlement.status == SettlementStatus.pending

    def test_unknown_settlement(self, db_session):
        with pytest.raises(HTTPException) as exc_info:
            initiate_payment(db_session, "missing", "U2")
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Settlement not found"


class TestRetryPayment:

    def test_pending_behaves_like_initiate(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")

        result = retry_payment(db_session, settlement.id, "U2")

        assert result.status == SettlementStatus.initiated
        assert result.retry_count == 0

    def test_retry_after_rejection_counts(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        initiate_payment(db_session, settlement.id, "U2")
        reject_payment(db_session, settlement.id, "U1")

        result = retry_payment(db_session, settlement.id, "U2")

        assert result.status == SettlementStatus.initiated
        assert result.retry_count == 1

    def test_retry_of_initiated_payment(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        first = initiate_payment(db_session, settlement.id, "U2").payment_id

        result = retry_payment(db_session, settlement.id, "U2")

        assert result.status == SettlementStatus.initiated
        assert result.retry_count == 1
        assert result.payment_id != first

    def test_failed_retry_records_error(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        initiate_payment(db_session, settlement.id, "U2")
        gateway = Mock(spec=PaymentGateway)
        gateway.start_payment.side_effect = HTTPException(status_code=502, detail="Stripe API returned 503")

        with pytest.raises(HTTPException) as exc_info:
            retry_payment(db_session, settlement.id, "U2", gateway=gateway)

        assert exc_info.value.status_code == 502
        db_session.refresh(settlement)
        assert settlement.status == SettlementStatus.failed
        assert settlement.failure_reason == "Stripe API returned 503"
        assert settlement.failed_at is not None

    def test_unexpected_gateway_error_is_recorded(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        initiate_payment(db_session, settlement.id, "U2")
        gateway = Mock(spec=PaymentGateway)
        gateway.start_payment.side_effect = ValueError("gateway returned an unreadable session")

        with pytest.raises(ValueError):
            retry_payment(db_session, settlement.id, "U2", gateway=gateway)

        db_session.refresh(settlement)
        assert settlement.status == SettlementStatus.failed
        assert settlement.failure_reason == "gateway returned an unreadable session"
        assert settlement.failed_at is not None

    def test_completed_cannot_retry(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        mark_paid_by_payee(db_session, settlement.id, "U1")

        with pytest.raises(HTTPException) as exc_info:
            retry_payment(db_session, settlement.id, "U2")

        assert exc_info.value.status_code == 409

    def test_only_payer(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")

        with pytest.raises(HTTPException) as exc_info:
            retry_payment(db_session, settlement.id, "U3")

        assert exc_info.value.status_code == 403


class TestApprovePayment:

    def test_completes_initiated_payment(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        initiate_payment(db_session, settlement.id, "U2")

        result = approve_payment(db_session, settlement.id, "U1")

        assert result.status == SettlementStatus.completed
        assert result.completed_at is not None
        db_session.refresh(event_in_payment)
        assert event_in_payment.status == EventStatus.payment

    def test_last_completion_settles_event(self, event_in_payment, db_session):
        event = event_in_payment
        for user_id in ("U2", "U3"):
            settlement = settlement_from(db_session, event, user_id)
            initiate_payment(db_session, settlement.id, user_id)
            approve_payment(db_session, settlement.id, "U1")

        db_session.refresh(event)
        assert event.status == EventStatus.settled

    def test_requires_initiated(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")

        with pytest.raises(HTTPException) as exc_info:
            approve_payment(db_session, settlement.id, "U1")

        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "Cannot approve payment: transaction is pending, expected initiated"

    def test_only_payee(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        initiate_payment(db_session, settlement.id, "U2")

        with pytest.raises(HTTPException) as exc_info:
            approve_payment(db_session, settlement.id, "U2")

        assert exc_info.value.status_code == 403


class TestRejectPayment:

    def test_default_reason(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        initiate_payment(db_session, settlement.id, "U2")

        result = reject_payment(db_session, settlement.id, "U1")

        assert result.status == SettlementStatus.failed
        assert result.failure_reason == "rejected_by_payee"
        assert result.failed_at is not None

    def test_custom_reason(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        initiate_payment(db_session, settlement.id, "U2")

        result = reject_payment(db_session, settlement.id, "U1", reason="Amount never arrived")

        assert result.failure_reason == "Amount never arrived"

    def test_requires_initiated(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")

        with pytest.raises(HTTPException) as exc_info:
            reject_payment(db_session, settlement.id, "U1")

        assert exc_info.value.status_code == 409

    def test_only_payee(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        initiate_payment(db_session, settlement.id, "U2")

        with pytest.raises(HTTPException) as exc_info:
            reject_payment(db_session, settlement.id, "U3")

        assert exc_info.value.status_code == 403


class TestMarkPaidByPayee:

    def test_from_pending(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")

        result = mark_paid_by_payee(db_session, settlement.id, "U1")

        assert result.status == SettlementStatus.completed
        assert result.payment_method == "manual"

    def test_all_marked_settles_event(self, event_in_payment, db_session):
        event = event_in_payment
        for settlement in get_event_settlements(db_session, event.id):
            mark_paid_by_payee(db_session, settlement.id, "U1")

        db_session.refresh(event)
        assert event.status == EventStatus.settled

    def test_already_completed(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")
        mark_paid_by_payee(db_session, settlement.id, "U1")

        with pytest.raises(HTTPException) as exc_info:
            mark_paid_by_payee(db_session, settlement.id, "U1")

        assert exc_info.value.status_code == 409

    def test_only_payee(self, event_in_payment, db_session):
        settlement = settlement_from(db_session, event_in_payment, "U2")

        with pytest.raises(HTTPException) as exc_info:
            mark_paid_by_payee(db_session, settlement.id, "U2")

        assert exc_info.value.status_code == 403

    def test_blocked_while_awaiting_approval(self, make_event, add_expense, db_session):
        """A payee cannot complete a transaction before every entity has approved the plan."""
        event = make_event(["U1", "U2"])
        add_expense(event, "U1", "100", ["U1", "U2"])
        generate_settlement(db_session, event.id, "U1")
        settlement = settlement_from(db_session, event, "U2")

        with pytest.raises(HTTPException) as exc_info:
            mark_paid_by_payee(db_session, settlement.id, "U1")

        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "Cannot mark payment as paid: settlement is still awaiting approval"
        db_session.refresh(settlement)
        db_session.refresh(event)
        assert settlement.status == SettlementStatus.pending
        assert event.status == EventStatus.review
        assert not any(entry["approved"] for entry in event.settlement_approvals.values())


class TestSettleEvent:

    def test_review_event_is_not_settled_by_completed_rows(self, make_event, add_expense, db_session):
        event = make_event(["U1", "U2"])
        add_expense(event, "U1", "100", ["U1", "U2"])
        generate_settlement(db_session, event.id, "U1")
        settlement = settlement_from(db_session, event, "U2")
        settlement.status = SettlementStatus.initiated
        db_session.commit()

        result = approve_payment(db_session, settlement.id, "U1")

        assert result.status == SettlementStatus.completed
        db_session.refresh(event)
        assert event.status == EventStatus.review
