"""
Payment gateway adapter.

Starts a checkout for one settlement with the provider chosen for its
currency, or with an in-process mock. Which one is used depends on
PAYMENT_GATEWAY_MODE:

- mock: always mock
- live: always the real provider
- auto: the real provider in production; elsewhere only when the caller
  asks for it and PAYMENT_ALLOW_REAL_IN_NON_PROD is set (internal testers)
"""
import logging
import uuid
from typing import Any, Dict, Optional
import httpx
from fastapi import HTTPException
from tabsettle.core.config import Settings, settings
from tabsettle.schemas.payment_schema import PaymentRequest, PaymentSession
from tabsettle.utils.money import to_cents

logger = logging.getLogger(__name__)

STRIPE_CHECKOUT_URL = "https://api.stripe.com/v1/checkout/sessions"
RAZORPAY_PAYMENT_LINKS_URL = "https://api.razorpay.com/v1/payment_links"


class PaymentGateway:
    """Creates provider checkout sessions for settlements"""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or settings

    def uses_real_gateway(self, use_real_gateway: bool = False) -> bool:
        mode = self.config.PAYMENT_GATEWAY_MODE.lower()
        if mode == "mock":
            return False
        if mode == "live":
            return True
        if self.config.APP_ENV.lower() == "production":
            return True
        return use_real_gateway and self.config.PAYMENT_ALLOW_REAL_IN_NON_PROD

    def start_payment(self, provider: str, request: PaymentRequest, use_real_gateway: bool = False) -> PaymentSession:
        """
        Start a payment for a settlement

        Args:
            provider: "stripe" or "razorpay"
            request: Settlement id, amount, currency and description
            use_real_gateway: Caller opt-in for real providers outside production

        Returns:
            PaymentSession with the provider's payment id and checkout url

        Raises:
            HTTPException: 502 when the provider is not configured or rejects the request
        """
        if not self.uses_real_gateway(use_real_gateway):
            return self._start_mock_payment(request)

        if provider == "stripe":
            return self._create_stripe_checkout(request)
        if provider == "razorpay":
            return self._create_razorpay_payment_link(request)
        raise HTTPException(status_code=502, detail=f"Unsupported payment provider: {provider}")

    def _start_mock_payment(self, request: PaymentRequest) -> PaymentSession:
        payment_id = f"mock-pay-{uuid.uuid4()}"
        logger.info(f"Mock payment {payment_id} started for settlement {request.settlement_id}")
        return PaymentSession(provider="mock", provider_payment_id=payment_id)

    def _create_stripe_checkout(self, request: PaymentRequest) -> PaymentSession:
        if not self.config.STRIPE_SECRET_KEY:
            raise HTTPException(status_code=502, detail="Stripe is not configured")

        form = {
            "mode": "payment",
            "success_url": self.config.PAYMENT_SUCCESS_URL,
            "cancel_url": self.config.PAYMENT_CANCEL_URL,
            "client_reference_id": request.settlement_id,
            "line_items[0][quantity]": "1",
            "line_items[0][price_data][currency]": request.currency.lower(),
            "line_items[0][price_data][unit_amount]": str(to_cents(request.amount)),
            "line_items[0][price_data][product_data][name]": request.description,
            "metadata[settlement_id]": request.settlement_id,
        }
        response = self._post(
            "Stripe",
            STRIPE_CHECKOUT_URL,
            data=form,
            headers={"Authorization": f"Bearer {self.config.STRIPE_SECRET_KEY}"},
        )
        body = _json_body(response)
        if not response.is_success:
            message = (body.get("error") or {}).get("message")
            if message:
                raise HTTPException(status_code=502, detail=f"Failed to create Stripe checkout session: {message}")
            raise HTTPException(status_code=502, detail=f"Stripe API returned {response.status_code}")

        logger.info(f"Stripe checkout session {body.get('id')} created for settlement {request.settlement_id}")
        return PaymentSession(provider="stripe", provider_payment_id=_payment_id(body, "Stripe"), checkout_url=body.get("url"))

    def _create_razorpay_payment_link(self, request: PaymentRequest) -> PaymentSession:
        if not self.config.RAZORPAY_KEY_ID or not self.config.RAZORPAY_KEY_SECRET:
            raise HTTPException(status_code=502, detail="Razorpay is not configured")

        payload = {
            "amount": to_cents(request.amount),
            "currency": request.currency.upper(),
            "description": request.description,
            "reference_id": request.settlement_id,
            "callback_url": self.config.PAYMENT_SUCCESS_URL,
            "callback_method": "get",
        }
        response = self._post(
            "Razorpay",
            RAZORPAY_PAYMENT_LINKS_URL,
            json=payload,
            auth=(self.config.RAZORPAY_KEY_ID, self.config.RAZORPAY_KEY_SECRET),
        )
        body = _json_body(response)
        if not response.is_success:
            description = (body.get("error") or {}).get("description")
            if description:
                raise HTTPException(status_code=502, detail=f"Failed to create Razorpay payment link: {description}")
            raise HTTPException(status_code=502, detail=f"Razorpay API returned {response.status_code}")

        logger.info(f"Razorpay payment link {body.get('id')} created for settlement {request.settlement_id}")
        return PaymentSession(provider="razorpay", provider_payment_id=_payment_id(body, "Razorpay"), checkout_url=body.get("short_url"))

    def _post(self, provider_name: str, url: str, **kwargs) -> httpx.Response:
        try:
            return httpx.post(url, timeout=self.config.PAYMENT_HTTP_TIMEOUT, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{provider_name} request failed: {e}")
            raise HTTPException(status_code=502, detail=f"{provider_name} request failed: {e}")


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _payment_id(body: Dict[str, Any], provider_name: str) -> str:
    payment_id = body.get("id")
    if not payment_id:
        raise HTTPException(status_code=502, detail=f"{provider_name} API response is missing the payment id")
    return str(payment_id)


# Global gateway instance
_payment_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Get or create payment gateway instance"""
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = PaymentGateway()
    return _payment_gateway
