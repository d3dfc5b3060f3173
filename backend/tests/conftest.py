import os
import tempfile

# CRITICAL: Set environment variables BEFORE any marketplace_analytics imports.
# They must be in place before marketplace_analytics.config.settings is loaded.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "test_marketplace_analytics.db")
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"  # Ensure /api prefix is used in tests

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from marketplace_analytics import models
from marketplace_analytics.database import Base, engine as app_engine
from marketplace_analytics.main import app
from marketplace_analytics.services.analytics_store import SqlAlchemyAnalyticsStore

TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True)

# Fixed reference instant for engine tests; windows are computed relative to it.
NOW = datetime(2026, 3, 31, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """
    Create all tables before each test and drop them after.
    Also restores dependency overrides so tests stay isolated.
    """
    original_overrides = dict(app.dependency_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def store():
    return SqlAlchemyAnalyticsStore(TestingSessionLocal)


def _id() -> str:
    return str(uuid.uuid4())


class Seeder:
    """Inserts marketplace rows with sensible defaults; every helper commits."""

    def __init__(self, db):
        self.db = db

    def _add(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def seller(self, display_name="Acme Metals", country="SA", **kw):
        return self._add(models.SellerProfile(id=kw.pop("id", _id()), display_name=display_name, country=country, **kw))

    def item(self, category="Steel", name="Rebar", sku="RB-1", **kw):
        return self._add(models.Item(id=kw.pop("id", _id()), category=category, name=name, sku=sku, **kw))

    def rfq(self, buyer_id, created_at, seller_id=None, **kw):
        return self._add(models.ItemRfq(buyer_id=buyer_id, seller_id=seller_id, created_at=created_at, **kw))

    def quote(self, rfq, seller_id, created_at, status=models.QuoteStatus.sent, **kw):
        return self._add(
            models.MarketplaceQuote(rfq_id=rfq.id, seller_id=seller_id, created_at=created_at, status=status, **kw)
        )

    def order(
        self,
        buyer_id,
        seller_id,
        created_at,
        total_price=100.0,
        status=models.OrderStatus.confirmed,
        city=None,
        **kw,
    ):
        if city is not None and "shipping_address" not in kw:
            kw["shipping_address"] = json.dumps({"city": city, "street": "King Fahd Rd"})
        return self._add(
            models.MarketplaceOrder(
                buyer_id=buyer_id,
                seller_id=seller_id,
                created_at=created_at,
                total_price=total_price,
                status=status,
                **kw,
            )
        )

    def invoice(self, seller_id, created_at, issued_at=None, paid_at=None, **kw):
        return self._add(
            models.MarketplaceInvoice(
                seller_id=seller_id, created_at=created_at, issued_at=issued_at, paid_at=paid_at, **kw
            )
        )

    def payment(self, seller_id, created_at, confirmed_at=None, **kw):
        return self._add(
            models.MarketplacePayment(seller_id=seller_id, created_at=created_at, confirmed_at=confirmed_at, **kw)
        )


@pytest.fixture
def seed(db_session):
    return Seeder(db_session)


def days_ago(n: float, *, now: datetime = NOW) -> datetime:
    return now - timedelta(days=n)
