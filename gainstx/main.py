#!/usr/bin/env python
"""
gainstx/main.py

Sets up the FastAPI application for GainsTX, a crypto ledger with transfer
reconciliation and realized-gains calculation.

Key Roles:
 - Adds CORS middleware for frontend integration
 - Creates the ledger tables at startup
 - Includes the 'account', 'transaction', 'import' and 'calculation' routers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gainstx.config import ALLOWED_ORIGINS
from gainstx.database import create_tables
from gainstx.routers import account, calculation, csv_import, transaction

logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# Database: Create Tables at Startup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Ensures tables are created (if not already) when FastAPI starts.
    This won't delete or overwrite existing data; it's idempotent.
    """
    create_tables()
    yield

# ---------------------------------------------------------
# Initialize the FastAPI application
# ---------------------------------------------------------
app = FastAPI(
    title="GainsTX API",
    description=(
        "Crypto ledger API: file import, transfer reconciliation, price "
        "backfill and realized gains with FIFO/LIFO/TaxMin/Estimate lots."
    ),
    version="1.0",
    lifespan=lifespan,
)

# ---------------------------------------------------------
# CORS Middleware
# ---------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------
# Routers
# ---------------------------------------------------------
app.include_router(account.router, prefix="/api/accounts", tags=["accounts"])
app.include_router(transaction.router, prefix="/api/transactions", tags=["transactions"])
app.include_router(csv_import.router, prefix="/api/import", tags=["import"])
app.include_router(calculation.router, prefix="/api/calculations", tags=["calculations"])


@app.get("/api/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("gainstx.main:app", host="127.0.0.1", port=8000)
