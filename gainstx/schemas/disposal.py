"""
gainstx/schemas/disposal.py

Read schema for Disposal rows (one consumed portion of one lot).
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class DisposalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    currency: str
    buy_transaction_id: int
    sell_transaction_id: int
    acquired_at: datetime
    disposed_at: datetime
    amount: Decimal
    cost_basis: Decimal
    sale_price: Decimal
    gain: Decimal
    term: str
