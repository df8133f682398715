"""
Shared pytest fixtures for the GainsTX test suite.

Every test gets its own in-memory SQLite database, so tests never touch
the real database and never see each other's rows. The FastAPI
TestClient is wired to the same database through a get_db override.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from gainstx.config import DisposalConfig
from gainstx.database import Base, get_db
from gainstx.main import app
from gainstx.routers.calculation import get_disposal_config, get_price_oracle
from gainstx.services.ledger import find_or_create_account, save_transaction

# Import all models so Base.metadata knows about them
from gainstx.models.account import Account            # noqa: F401
from gainstx.models.transaction import Transaction    # noqa: F401
from gainstx.models.disposal import Disposal          # noqa: F401


def ts(year, month, day, hour=0, minute=0, second=0):
    """UTC datetime shorthand."""
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


class FakeOracle:
    """Price oracle answering from a {(currency, date): price} map."""

    def __init__(self, prices=None):
        self.prices = {
            key: Decimal(str(value)) for key, value in (prices or {}).items()
        }
        self.calls = []

    def get_price(self, currency, day):
        if isinstance(day, datetime):
            day = day.date()
        self.calls.append((currency, day))
        return self.prices.get((currency, day))

    def close(self):
        pass


@pytest.fixture
def test_engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def test_db(session_factory):
    """Direct SQLAlchemy session for tests that need DB access."""
    db = session_factory()
    yield db
    db.close()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Disposal methods must come from the test, not the developer's .env."""
    monkeypatch.delenv("DISPOSAL_METHODS", raising=False)
    monkeypatch.delenv("DISPOSAL_METHODS_FILE", raising=False)


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def client(session_factory, oracle):
    """TestClient using the test database and the fake price oracle."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_price_oracle] = lambda: oracle
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def use_methods():
    """Set the disposal-method map the API will use for this test."""

    def _use(methods):
        config = DisposalConfig(methods)
        app.dependency_overrides[get_disposal_config] = lambda: config
        return config

    return _use


@pytest.fixture
def make_tx(test_db):
    """
    Factory writing one transaction through the ledger store. Accounts are
    created on demand, keyed by (source, currency).
    """

    def _make(
        timestamp,
        amount,
        type="buy",
        currency="BTC",
        source="test",
        usd_value=None,
        **fields,
    ):
        account = find_or_create_account(
            test_db,
            source=source,
            external_reference=f"{source}:{currency}",
            currency=currency,
        )
        tx = Transaction(
            account_id=account.id,
            timestamp=timestamp,
            amount=Decimal(str(amount)),
            currency=currency,
            type=type,
            source=source,
            source_amount=Decimal(str(amount)),
            usd_value=Decimal(str(usd_value)) if usd_value is not None else None,
            **fields,
        )
        save_transaction(test_db, tx)
        test_db.commit()
        return tx

    return _make
