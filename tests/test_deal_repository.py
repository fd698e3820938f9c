"""Tests for the deal store: upsert by sku, queries, reconciliation."""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from clearance.core.exceptions import PersistenceError
from clearance.models import Deal
from clearance.repositories.category_repository import CategoryRepository
from clearance.repositories.deal_repository import (
    AVAILABILITY_IN_STORE,
    AVAILABILITY_ONLINE,
    DealQuery,
    DealRepository,
)


class Ticker:
    """Clock advancing one minute per call."""

    def __init__(self):
        self.now = datetime(2026, 1, 1, 8, 0, 0)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def repo(session):
    return DealRepository(session, clock=Ticker())


class TestUpsert:

    def test_insert_then_update(self, repo, make_item):
        deal, is_new = repo.upsert(make_item(sku="A", price="10.06"))
        assert is_new
        created_at = deal.created_at

        deal, is_new = repo.upsert(make_item(sku="A", price="9.04", title="Renamed"))
        assert not is_new
        assert deal.title == "Renamed"
        assert deal.current_price == Decimal("9.04")
        assert deal.price_ending == ".04"
        assert deal.created_at == created_at
        assert deal.last_updated_at > created_at

    def test_one_row_per_sku(self, repo, session, make_item):
        for _ in range(3):
            repo.upsert(make_item(sku="A"))
        assert len(session.scalars(select(Deal)).all()) == 1

    def test_featured_flag_is_not_touched(self, repo, make_item):
        deal, _ = repo.upsert(make_item(sku="A"))
        repo.set_featured(deal.id, True)

        deal, _ = repo.upsert(make_item(sku="A", price="1.02"))
        assert deal.is_featured is True

    def test_empty_sku_is_rejected(self, repo, make_item):
        with pytest.raises(PersistenceError):
            repo.upsert(make_item(sku=""))

    def test_duplicate_insert_race_becomes_update(self, repo, session, make_item, monkeypatch):
        repo.upsert(make_item(sku="A", price="5.06"))
        session.flush()

        # Simulate a concurrent producer: the existence check misses, the insert collides
        real_find = repo.find_by_sku
        calls = {"n": 0}

        def racy_find(sku):
            calls["n"] += 1
            return None if calls["n"] == 1 else real_find(sku)

        monkeypatch.setattr(repo, "find_by_sku", racy_find)
        deal, is_new = repo.upsert(make_item(sku="A", price="4.03"))

        assert not is_new
        assert deal.current_price == Decimal("4.03")
        assert len(session.scalars(select(Deal)).all()) == 1

    def test_category_is_resolved_never_created(self, repo, session, make_item):
        tools = CategoryRepository(session).create("Power Tools")

        deal, _ = repo.upsert(make_item(sku="A", category_hint="power tools"))
        assert deal.category_id == tools.id

        deal, _ = repo.upsert(make_item(sku="B", category_hint="Garden"))
        assert deal.category_id is None
        assert len(CategoryRepository(session).list()) == 1


class TestReconciliation:

    def test_unseen_deals_become_unavailable(self, repo, session, make_item):
        for sku in ("A", "B", "C"):
            repo.upsert(make_item(sku=sku))

        assert repo.mark_unavailable_except({"A", "C"}) == 1
        session.expire_all()

        b = repo.find_by_sku("B")
        assert b.online_available is False
        assert b.in_store_available is False
        assert repo.find_by_sku("A").online_available is True

    def test_already_unavailable_deals_are_not_counted(self, repo, make_item):
        repo.upsert(make_item(sku="A"))
        repo.upsert(make_item(sku="B", online=False, in_store=False))

        assert repo.mark_unavailable_except({"A"}) == 0

    def test_empty_seen_set_is_a_noop(self, repo, session, make_item):
        repo.upsert(make_item(sku="A"))

        assert repo.mark_unavailable_except(set()) == 0
        session.expire_all()
        assert repo.find_by_sku("A").online_available is True

    def test_unavailable_deal_comes_back_when_seen_again(self, repo, session, make_item):
        repo.upsert(make_item(sku="A"))
        repo.upsert(make_item(sku="B"))
        repo.mark_unavailable_except({"A"})
        session.expire_all()

        deal, is_new = repo.upsert(make_item(sku="B"))
        assert not is_new
        assert deal.online_available is True


class TestQuery:

    @pytest.fixture
    def catalog(self, repo, make_item):
        repo.upsert(make_item(sku="DRILL-1", price="89.06", original="149.99"))
        repo.upsert(make_item(sku="DRILL-2", price="20.99", original="25.00"))
        repo.upsert(make_item(sku="SAW-1", price="45.04", original="90.00", in_store=False,
                              availability_data={"zip": "30301"}))
        repo.upsert(make_item(sku="SAW-2", price="12.03", original=None, online=False,
                              store_locations=[{"zip": "10001"}]))
        repo.upsert(make_item(sku="GONE", price="3.02", online=False, in_store=False))
        return repo

    def skus(self, deals):
        return sorted(d.sku for d in deals)

    def test_default_hides_unavailable(self, catalog):
        assert "GONE" not in self.skus(catalog.query(DealQuery()))

    def test_channel_filters(self, catalog):
        assert self.skus(catalog.query(DealQuery(availability=AVAILABILITY_ONLINE))) == [
            "DRILL-1", "DRILL-2", "SAW-1"]
        assert self.skus(catalog.query(DealQuery(availability=AVAILABILITY_IN_STORE))) == [
            "DRILL-1", "DRILL-2", "SAW-2"]

    def test_price_ending_and_discount(self, catalog):
        endings = catalog.query(DealQuery(price_endings=[".06", ".04"]))
        assert self.skus(endings) == ["DRILL-1", "SAW-1"]
        discounted = catalog.query(DealQuery(min_discount=45, max_discount=55))
        assert self.skus(discounted) == ["SAW-1"]

    def test_sku_substring_is_case_insensitive(self, catalog):
        assert self.skus(catalog.query(DealQuery(sku="drill"))) == ["DRILL-1", "DRILL-2"]

    def test_location_matches_either_location_field(self, catalog):
        assert self.skus(catalog.query(DealQuery(location="30301"))) == ["SAW-1"]
        assert self.skus(catalog.query(DealQuery(location="10001"))) == ["SAW-2"]

    def test_featured_first_then_most_recent(self, catalog):
        oldest = catalog.find_by_sku("DRILL-1")
        catalog.set_featured(oldest.id, True)

        ordered = [d.sku for d in catalog.query(DealQuery())]
        assert ordered == ["DRILL-1", "SAW-2", "SAW-1", "DRILL-2"]

    def test_featured_only(self, catalog):
        catalog.set_featured(catalog.find_by_sku("SAW-1").id, True)
        assert self.skus(catalog.query(DealQuery(featured_only=True))) == ["SAW-1"]

    def test_offset_and_limit(self, catalog):
        page = catalog.query(DealQuery(offset=1, limit=2))
        assert [d.sku for d in page] == ["SAW-1", "DRILL-2"]
