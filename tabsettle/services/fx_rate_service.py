"""
Foreign exchange service for settlement currency conversion.

Two modes are supported:
1. predefined: rates fixed on the event ("USD_INR": 83.1); the reverse pair
   is inverted when only that one is defined
2. eod: end-of-day rates fetched from a public API and cached per base
   currency per day

A predefined event without a matching pair falls back to eod.
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional
import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session
from tabsettle.core.config import settings
from tabsettle.models.events import FxRateMode
from tabsettle.models.fx_rates import FxRateCache
from tabsettle.schemas.fx_schema import FxRate
from tabsettle.utils.money import round_decimal

logger = logging.getLogger(__name__)

RATE_PRECISION = Decimal('0.000001')


def get_rate(
    db: Session,
    from_currency: str,
    to_currency: str,
    predefined_rates: Optional[Dict[str, float]] = None,
    mode: FxRateMode = FxRateMode.eod
) -> FxRate:
    """
    Get the rate for converting ``from_currency`` into ``to_currency``.

    Returns:
        FxRate where 1 unit of from_currency = rate units of to_currency
    """
    from_upper = from_currency.upper()
    to_upper = to_currency.upper()
    today = date.today().isoformat()

    if from_upper == to_upper:
        return FxRate(from_currency=from_upper, to_currency=to_upper, rate=Decimal('1'), date=today, source=FxRateMode(mode).value)

    if FxRateMode(mode) == FxRateMode.predefined and predefined_rates:
        direct = predefined_rates.get(f"{from_upper}_{to_upper}")
        if direct:
            return FxRate(
                from_currency=from_upper, to_currency=to_upper,
                rate=Decimal(str(direct)), date=today, source=FxRateMode.predefined.value
            )
        reverse = predefined_rates.get(f"{to_upper}_{from_upper}")
        if reverse:
            return FxRate(
                from_currency=from_upper, to_currency=to_upper,
                rate=_invert(Decimal(str(reverse))), date=today, source=FxRateMode.predefined.value
            )
        logger.info(f"No predefined rate for {from_upper}->{to_upper}, falling back to end-of-day rates")

    return get_eod_rate(db, from_upper, to_upper)


def get_eod_rate(db: Session, from_currency: str, to_currency: str) -> FxRate:
    """
    Get today's end-of-day rate, using the daily cache when possible.

    The cache row is added to the session but not committed; it is
    persisted with the caller's unit of work.
    """
    today = date.today()

    cached = _get_cached_rates(db, from_currency, today)
    if cached and cached.get(to_currency):
        return _eod(from_currency, to_currency, Decimal(str(cached[to_currency])), today)

    try:
        rates = fetch_rates_from_api(from_currency)
    except (httpx.HTTPError, ValueError) as e:
        reverse_cached = _get_cached_rates(db, to_currency, today)
        if reverse_cached and reverse_cached.get(from_currency):
            logger.warning(f"FX fetch for {from_currency} failed, using cached reverse rate: {e}")
            return _eod(from_currency, to_currency, _invert(Decimal(str(reverse_cached[from_currency]))), today)
        logger.error(f"Failed to fetch FX rate {from_currency}->{to_currency}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch FX rate {from_currency}->{to_currency}: {e}")

    _store_rates(db, from_currency, today, rates)

    if to_currency not in rates:
        raise HTTPException(
            status_code=502,
            detail=f"Failed to fetch FX rate {from_currency}->{to_currency}: currency {to_currency} not found in FX API response"
        )
    return _eod(from_currency, to_currency, Decimal(str(rates[to_currency])), today)


def fetch_rates_from_api(base_currency: str) -> Dict[str, float]:
    """
    Fetch the latest rate set for ``base_currency``.

    Response format: {"result": "success", "rates": {"USD": 1, "INR": 83.1, ...}}

    Raises:
        httpx.HTTPError: network failure or non-2xx status
        ValueError: the API answered but not with a usable rate set
    """
    api_url = f"{settings.FX_API_BASE}/{base_currency}"
    logger.info(f"Fetching end-of-day exchange rates for {base_currency}")

    response = httpx.get(api_url, timeout=settings.FX_HTTP_TIMEOUT)
    response.raise_for_status()
    data = response.json()

    if settings.DEBUG:
        logger.debug(f"FX API response: {data}")

    if data.get("result") != "success" or not data.get("rates"):
        raise ValueError(f"Invalid FX API response: {data.get('error-type', 'missing rates')}")
    return data["rates"]


def convert(amount: Decimal, rate: Decimal) -> Decimal:
    """Convert an amount with the given rate, rounded to the cent"""
    return round_decimal(Decimal(str(amount)) * Decimal(str(rate)))


def get_payment_provider(settlement_currency: str) -> str:
    """Razorpay handles INR, Stripe everything else"""
    return "razorpay" if settlement_currency.upper() == "INR" else "stripe"


def _invert(rate: Decimal) -> Decimal:
    return (Decimal('1') / rate).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


def _eod(from_currency: str, to_currency: str, rate: Decimal, on: date) -> FxRate:
    return FxRate(
        from_currency=from_currency, to_currency=to_currency,
        rate=rate, date=on.isoformat(), source=FxRateMode.eod.value
    )


def _get_cached_rates(db: Session, base_currency: str, on: date) -> Optional[Dict[str, float]]:
    row = db.query(FxRateCache).filter(
        FxRateCache.base == base_currency,
        FxRateCache.date == on
    ).first()
    return row.rates if row else None


def _store_rates(db: Session, base_currency: str, on: date, rates: Dict[str, float]) -> None:
    row = db.query(FxRateCache).filter(
        FxRateCache.base == base_currency,
        FxRateCache.date == on
    ).first()
    if row:
        row.rates = dict(rates)
        row.fetched_at = datetime.now(timezone.utc)
    else:
        db.add(FxRateCache(base=base_currency, date=on, rates=dict(rates)))
    db.flush()
