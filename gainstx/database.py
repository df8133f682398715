#!/usr/bin/env python
"""
gainstx/database.py

Sets up the SQLAlchemy database connection, session management, and helper
functions for creating tables. All ledger models (Account, Transaction,
Disposal) register with the declarative Base defined here.

Notes:
- .env at the project root is loaded before DATABASE_URL / DATABASE_FILE
  are read; the default is a SQLite file next to the package
- get_db() hands one session to each FastAPI request
- timestamps are stored as sortable UTC strings (UTCDateTime)
"""

import os
import logging
import datetime
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator, String

# ------------------------------------------------------------------
# 0) Logging Setup
# ------------------------------------------------------------------
logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# 1) Environment Setup
# ------------------------------------------------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BASE_DIR)

dotenv_path = os.path.join(PROJECT_ROOT, ".env")
load_dotenv(dotenv_path=dotenv_path)
logger.debug(f"Loaded .env from: {dotenv_path}")

DATABASE_FILE_ENV = os.getenv("DATABASE_FILE", "gainstx.db")
DATABASE_FILE = (
    DATABASE_FILE_ENV if os.path.isabs(DATABASE_FILE_ENV)
    else os.path.join(PROJECT_ROOT, DATABASE_FILE_ENV)
)

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATABASE_FILE}")
logger.debug(f"DATABASE_URL: {DATABASE_URL}")

# ------------------------------------------------------------------
# 2) SQLAlchemy Engine and Session Setup
# ------------------------------------------------------------------
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# ------------------------------------------------------------------
# 3) Custom UTC DateTime
# ------------------------------------------------------------------
UTC_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class UTCDateTime(TypeDecorator):
    """
    Stores Python datetimes as fixed-width ISO8601 strings with 'Z', so that
    string ordering in the database matches chronological ordering. Values
    are read back as offset-aware UTC datetimes.
    """
    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        """Convert Python datetime -> string before saving to DB."""
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc).strftime(UTC_FORMAT)

    def process_result_value(self, value, dialect):
        """Convert string -> Python datetime (UTC) after fetching from DB."""
        if value is None:
            return None
        parsed = datetime.datetime.strptime(value, UTC_FORMAT)
        return parsed.replace(tzinfo=datetime.timezone.utc)

# ------------------------------------------------------------------
# 4) FastAPI Dependency Injection
# ------------------------------------------------------------------
def get_db():
    """
    One session per request, closed when the response is done.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# ------------------------------------------------------------------
# 5) Table Initialization
# ------------------------------------------------------------------
def create_tables(bind=None):
    """
    Creates all ledger tables if they do not exist yet. Idempotent; never
    drops or rewrites existing rows.
    """
    # Import models to register with Base.metadata
    from gainstx.models import account, transaction, disposal  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created or verified.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_tables()
