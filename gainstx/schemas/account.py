"""
gainstx/schemas/account.py

Read schema for Account rows. Accounts are created by importers only
(find-or-create on source + external_reference), so there is no create or
update schema.
"""

from pydantic import BaseModel, ConfigDict
from typing import Optional


class AccountRead(BaseModel):
    """
    - 'source': importer that owns the account, e.g. "file:ledger"
    - 'external_reference': the source's own identifier
    - 'currency': the single currency held, e.g. "BTC"
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    external_reference: str
    display_name: Optional[str] = None
    currency: str
