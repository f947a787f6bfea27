from pydantic import BaseModel
from decimal import Decimal


class FxRate(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal
    date: str
    source: str  # predefined, eod
