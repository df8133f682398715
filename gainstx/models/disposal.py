"""
gainstx/models/disposal.py

Logs how a disposing transaction consumed part of one acquisition lot.
If a sell of 0.5 BTC is matched against a lot with 0.3 left, two Disposal
rows are written: 0.3 from that lot, then 0.2 from the next one chosen by
the year's disposal policy.

The table is owned by the gains calculator: it is truncated and rebuilt on
every run. 'term' is derived from acquired_at/disposed_at by
gainstx.services.pricing.holding_term at write time.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship

from gainstx.database import Base, UTCDateTime


class Disposal(Base):
    __tablename__ = "disposals"

    id = Column(Integer, primary_key=True)

    currency = Column(String, nullable=False, index=True)

    buy_transaction_id = Column(
        Integer,
        ForeignKey("transactions.id"),
        nullable=False,
        doc="Transaction that opened the consumed lot."
    )
    sell_transaction_id = Column(
        Integer,
        ForeignKey("transactions.id"),
        nullable=False,
        doc="Transaction that disposed of this portion."
    )

    acquired_at = Column(UTCDateTime, nullable=False)
    disposed_at = Column(UTCDateTime, nullable=False, index=True)

    amount = Column(
        Numeric(28, 10),
        nullable=False,
        doc="Units of 'currency' taken from the lot."
    )
    cost_basis = Column(Numeric(18, 2), nullable=False)
    sale_price = Column(Numeric(18, 2), nullable=False)
    gain = Column(
        Numeric(18, 2),
        nullable=False,
        doc="sale_price - cost_basis (negative => loss)."
    )

    term = Column(
        String(10),
        nullable=False,
        doc="'short' or 'long' (more than one calendar year held)."
    )

    buy_transaction = relationship("Transaction", foreign_keys=[buy_transaction_id])
    sell_transaction = relationship("Transaction", foreign_keys=[sell_transaction_id])

    def __repr__(self):
        return (
            f"<Disposal(id={self.id}, currency={self.currency}, buy={self.buy_transaction_id}, "
            f"sell={self.sell_transaction_id}, amount={self.amount}, gain={self.gain}, "
            f"term={self.term})>"
        )
