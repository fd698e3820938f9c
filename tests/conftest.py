"""Shared fixtures for the clearance test suite."""
import fnmatch
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal
from typing import List

import pytest
import redis
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clearance.db.redis_resource import RedisResource
from clearance.models import Base
from clearance.normalizers.item import DealItem, DealSource
from clearance.normalizers.upstream import calculate_discount, extract_price_ending
from clearance.services.activity_log import ActivityLogger
from clearance.services.cache_service import CacheService


# =====================================================================
# Database
# =====================================================================


@pytest.fixture
def engine():
    """In-memory SQLite, one shared connection, real SAVEPOINT support."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


# =====================================================================
# Redis
# =====================================================================


class FakeRedis:
    """Minimal in-memory stand-in for the redis client calls the cache makes."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.fail = False
        self.pings = 0

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("connection refused")

    def ping(self):
        self.pings += 1
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value.encode() if isinstance(value, str) else value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def scan_iter(self, match="*", count=None):
        self._check()
        return iter([key for key in list(self.store) if fnmatch.fnmatchcase(key, match)])

    def close(self):
        pass


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    resource = RedisResource("redis://test", factory=lambda url, **kwargs: fake_redis)
    return CacheService(resource)


@pytest.fixture
def activity(session_factory):
    return ActivityLogger(session_factory)


# =====================================================================
# Deals
# =====================================================================


@pytest.fixture
def make_item():
    """Factory building canonical DealItems with derived fields filled in."""

    def _make(
        sku="1000001",
        price="89.06",
        original="149.99",
        title=None,
        online=True,
        in_store=True,
        source=DealSource.API,
        **overrides,
    ):
        current = Decimal(price)
        original_price = Decimal(original) if original is not None else None
        fields = dict(
            sku=sku,
            title=title or f"Product {sku}",
            current_price=current,
            original_price=original_price,
            discount_percent=calculate_discount(current, original_price),
            price_ending=extract_price_ending(current),
            online_available=online,
            in_store_available=in_store,
            source=source,
        )
        fields.update(overrides)
        return DealItem(**fields)

    return _make


@pytest.fixture
def make_raw():
    """Factory building raw upstream records shaped like the actor output."""

    def _make(sku="1000001", price=89.06, was=149.99, **overrides):
        raw = {
            "storeSkuNumber": sku,
            "productLabel": f"Cordless Drill {sku}",
            "sskMax": price,
            "wasMaxPriceRange": was,
            "media": {"primaryImage": f"https://images.example.com/{sku}_<SIZE>.jpg"},
            "url": f"https://www.homedepot.com/p/{sku}",
        }
        raw.update(overrides)
        return raw

    return _make


class FakeFeed:
    """DealFeed returning canned results per query, recording calls."""

    def __init__(self, results=None, default=None, error=None):
        self.results = results or {}
        self.default = default if default is not None else []
        self.error = error
        self.calls: List[tuple] = []

    def fetch(self, query, limit):
        self.calls.append((query, limit))
        if self.error is not None:
            raise self.error
        return list(self.results.get(query, self.default))


@pytest.fixture
def fake_feed():
    return FakeFeed
