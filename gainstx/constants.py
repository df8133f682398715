"""
Shared constants for transaction types, currencies and matching tolerances.
"""

from datetime import timedelta
from decimal import Decimal

# Transaction types stored in transactions.type
TX_BUY = "buy"
TX_SELL = "sell"
TX_SEND = "send"
TX_RECEIVE = "receive"
TX_TRANSFER = "transfer"
TX_FEE = "fee"

# Sign each type must carry (+1 inflow, -1 outflow). Transfer/fee are exempt.
TYPE_POLARITY = {
    TX_BUY: 1,
    TX_RECEIVE: 1,
    TX_SELL: -1,
    TX_SEND: -1,
}

# Valuation currency; never walked for gains
USD = "USD"

# Holding periods written to disposals.term
TERM_SHORT = "short"
TERM_LONG = "long"

# Transfer matching
TRANSFER_WINDOW = timedelta(hours=1)
FUZZY_TOLERANCE = Decimal("0.01")

# Quantizers
USD_QUANT = Decimal("0.01")
CRYPTO_QUANT = Decimal("0.00000001")

# Estimate policy defaults (same as the historical "minimize" rates)
DEFAULT_SHORT_TERM_TAX_RATE = Decimal("0.35")
DEFAULT_LONG_TERM_TAX_RATE = Decimal("0.15")
