# gainstx/models/__init__.py

"""
Centralizes model imports so every table is registered with Base.metadata
as soon as any model is imported.
"""

from gainstx.database import Base

from .account import Account

from .transaction import Transaction

from .disposal import Disposal
