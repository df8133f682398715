"""
gainstx/models/account.py

Defines the Account model. Each Account is one balance at one source
(an exchange wallet, a file-imported wallet, ...) holding a single currency.

Accounts are keyed idempotently on (source, external_reference): importers
look them up with find-or-create and never delete them.

Account => One-to-many => Transaction
"""

from sqlalchemy import Column, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from gainstx.database import Base


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("source", "external_reference", name="uq_account_source_reference"),
    )

    # ---------------------------------------------------------------------
    # Primary Key & Fields
    # ---------------------------------------------------------------------
    id = Column(Integer, primary_key=True, index=True)

    # Importer that owns this account, e.g. "file:ledger" or "coinbase"
    source = Column(String, nullable=False)

    # The source's own identifier for the account
    external_reference = Column(String, nullable=False)

    # Label shown in summaries, e.g. "File (ledger - BTC)"
    display_name = Column(String, nullable=True)

    currency = Column(String, nullable=False)

    # ---------------------------------------------------------------------
    # Relationships
    # ---------------------------------------------------------------------
    transactions = relationship(
        "Transaction",
        back_populates="account",
        doc="Every ledger row recorded against this account."
    )

    def __repr__(self):
        return (
            f"<Account(id={self.id}, source={self.source}, "
            f"reference={self.external_reference}, currency={self.currency})>"
        )
