"""
gainstx/models/transaction.py

The normalized ledger row. Every importer emits Transactions with a signed
amount in the account's currency:
  - buy / receive => positive amount
  - sell / send   => negative amount
  - transfer      => either sign; paired with the opposite row on another account
  - fee           => negative amount split off a send or a matched transfer

usd_value and usd_price are the USD valuation of the row. usd_price is a
derived field (|usd_value / amount|) and is recomputed by
gainstx.services.pricing.derive_usd_fields at every write site, never by
ORM hooks.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship

from gainstx.database import Base, UTCDateTime


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)

    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)

    # Identifier assigned by the source (trade id, tx hash, ...)
    external_reference = Column(String, nullable=True, index=True)

    timestamp = Column(UTCDateTime, nullable=False, index=True)

    amount = Column(
        Numeric(28, 10),
        nullable=False,
        doc="Signed amount in 'currency' (negative => outflow)."
    )
    currency = Column(String, nullable=False, index=True)

    type = Column(
        String,
        nullable=False,
        doc="One of buy, sell, send, receive, transfer, fee."
    )

    # -------------------------------------------------------------------
    # Exchange (trade) details
    # -------------------------------------------------------------------
    exchange_reference = Column(
        String,
        nullable=True,
        index=True,
        doc="Shared by both legs of a trade."
    )
    exchange_value = Column(
        Numeric(28, 10),
        nullable=True,
        doc="Signed amount of the other leg, in exchange_currency."
    )
    exchange_currency = Column(String, nullable=True)

    # -------------------------------------------------------------------
    # USD valuation
    # -------------------------------------------------------------------
    usd_value = Column(Numeric(18, 2), nullable=True)
    usd_price = Column(
        Numeric(28, 10),
        nullable=True,
        doc="Derived: |usd_value / amount|. None while usd_value is unknown."
    )

    # Counterpart row of a reconciled transfer (mutual link)
    transfer_transaction_id = Column(Integer, nullable=True, index=True)

    # -------------------------------------------------------------------
    # Provenance
    # -------------------------------------------------------------------
    source = Column(String, nullable=True, index=True)
    source_amount = Column(
        Numeric(28, 10),
        nullable=True,
        doc="Amount as reported by the source, before fee adjustments."
    )
    source_type = Column(String, nullable=True)
    source_description = Column(String, nullable=True)

    account = relationship("Account", back_populates="transactions")

    def __repr__(self):
        return (
            f"<Transaction(id={self.id}, account={self.account_id}, type={self.type}, "
            f"amount={self.amount} {self.currency}, timestamp={self.timestamp}, "
            f"transfer={self.transfer_transaction_id})>"
        )
