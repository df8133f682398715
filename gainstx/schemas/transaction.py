"""
gainstx/schemas/transaction.py

Pydantic v2 schemas for ledger transactions.

- TxType: the six transaction types stored in transactions.type
- TransactionRead: API output, read straight from the ORM row
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime
from decimal import Decimal

from gainstx.constants import TX_BUY, TX_FEE, TX_RECEIVE, TX_SELL, TX_SEND, TX_TRANSFER

# -------------------------------------------------
# TRANSACTION TYPE ENUM
# -------------------------------------------------

class TxType(str, Enum):
    BUY = TX_BUY
    SELL = TX_SELL
    SEND = TX_SEND
    RECEIVE = TX_RECEIVE
    TRANSFER = TX_TRANSFER
    FEE = TX_FEE

# -------------------------------------------------
# TRANSACTION SCHEMAS
# -------------------------------------------------

class TransactionRead(BaseModel):
    """
    A ledger row as returned by the API. 'amount' is signed (negative for
    outflows); 'transfer_transaction_id' points at the other side of a
    reconciled transfer.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    external_reference: Optional[str] = None
    timestamp: datetime
    amount: Decimal
    currency: str
    type: TxType

    exchange_reference: Optional[str] = None
    exchange_value: Optional[Decimal] = None
    exchange_currency: Optional[str] = None

    usd_value: Optional[Decimal] = None
    usd_price: Optional[Decimal] = None
    transfer_transaction_id: Optional[int] = None

    source: Optional[str] = None
    source_amount: Optional[Decimal] = None
    source_type: Optional[str] = None
    source_description: Optional[str] = None
