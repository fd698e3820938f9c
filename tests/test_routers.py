"""API tests: public deal endpoints, admin authorization and curation."""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from rq.exceptions import NoSuchJobError
from rq.job import JobStatus
from sqlalchemy.exc import SQLAlchemyError

import main
from clearance.core import security
from clearance.db.deps import get_db
from clearance.deps import get_cache, get_refresh_queue
from clearance.repositories.category_repository import CategoryRepository
from clearance.repositories.deal_repository import DealRepository
from clearance.routers import admin as admin_router
from clearance.services.refresh_coordinator import refresh_job_timeout


def make_token(**claims):
    payload = {"sub": "user-1", "exp": datetime.utcnow() + timedelta(minutes=5)}
    payload.update(claims)
    return jwt.encode(payload, security.JWT_SECRET, algorithm=security.JWT_ALGO)


ADMIN = {"Authorization": f"Bearer {make_token(role='admin')}"}


@pytest.fixture
def queue():
    queue = MagicMock()
    queue.enqueue.return_value.id = "job-1"
    return queue


@pytest.fixture
def client(session_factory, cache, queue):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[get_db] = override_db
    main.app.dependency_overrides[get_cache] = lambda: cache
    main.app.dependency_overrides[get_refresh_queue] = lambda: queue
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


@pytest.fixture
def seeded(session, make_item):
    repo = DealRepository(session)
    deals = {}
    for item in (
        make_item(sku="A", price="89.06"),
        make_item(sku="B", price="20.99"),
    ):
        deal, _ = repo.upsert(item)
        deals[deal.sku] = deal.id
    session.commit()
    session.close()
    return deals


class TestPublicDeals:

    def test_default_listing(self, client, seeded):
        response = client.get("/v1/deals")

        assert response.status_code == 200
        assert [d["sku"] for d in response.json()["deals"]] == ["A"]
        assert "X-Request-ID" in response.headers

    def test_show_all(self, client, seeded):
        response = client.get("/v1/deals", params={"show_all": True})
        assert sorted(d["sku"] for d in response.json()["deals"]) == ["A", "B"]

    @pytest.mark.parametrize("params", [
        {"price_ending": "abc"},
        {"limit": 0},
        {"limit": 101},
        {"page": 0},
        {"min_discount": 150},
    ])
    def test_invalid_parameters(self, client, params):
        assert client.get("/v1/deals", params=params).status_code == 422

    def test_single_deal(self, client, seeded):
        assert client.get(f"/v1/deals/{seeded['A']}").json()["sku"] == "A"
        assert client.get("/v1/deals/99999").status_code == 404

    def test_store_failure_is_503(self, client, monkeypatch):
        def broken(self, criteria):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(DealRepository, "query", broken)
        response = client.get("/v1/deals")

        assert response.status_code == 503
        assert response.json()["error"]["type"] == "store_unavailable"

    def test_single_deal_and_categories_store_failure_are_503(self, client, monkeypatch):
        def broken(self, *args, **kwargs):
            raise SQLAlchemyError("connection refused")

        monkeypatch.setattr(DealRepository, "get", broken)
        monkeypatch.setattr(CategoryRepository, "list", broken)

        single = client.get("/v1/deals/1")
        assert single.status_code == 503
        assert single.json()["error"]["type"] == "store_unavailable"

        categories = client.get("/v1/deals/categories")
        assert categories.status_code == 503
        assert categories.json() == {
            "categories": [],
            "error": {"type": "store_unavailable", "message": "Failed to fetch categories"},
        }


class TestAdminAuth:

    @pytest.mark.parametrize("headers,status", [
        ({}, 401),
        ({"Authorization": "Bearer not-a-jwt"}, 401),
        ({"Authorization": f"Bearer {make_token(role='user')}"}, 403),
        ({"Authorization": f"Bearer {make_token(is_admin=True)}"}, 200),
        (ADMIN, 200),
    ])
    def test_token_checks(self, client, headers, status):
        assert client.get("/v1/admin/categories", headers=headers).status_code == status

    def test_token_without_subject_is_rejected(self, client):
        token = make_token(role="admin", sub="")
        response = client.get("/v1/admin/categories", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestAdminRefresh:

    @pytest.fixture
    def active_refresh(self, monkeypatch):
        state = {"job_id": None, "connections": []}

        def find(connection, exclude_job_id=None):
            state["connections"].append(connection)
            return state["job_id"]

        monkeypatch.setattr(admin_router, "find_active_refresh", find)
        return state

    def test_trigger_enqueues_job(self, client, queue, active_refresh):
        response = client.post("/v1/admin/refresh", headers=ADMIN)

        assert response.status_code == 202
        assert response.json() == {"job_id": "job-1", "status": "queued"}
        assert active_refresh["connections"] == [queue.connection]
        func = queue.enqueue.call_args.args[0]
        assert func.__name__ == "manual_refresh"
        assert queue.enqueue.call_args.kwargs["job_timeout"] == refresh_job_timeout()

    def test_trigger_during_running_refresh_is_not_queued(self, client, queue, active_refresh):
        active_refresh["job_id"] = "scheduled-7"

        response = client.post("/v1/admin/refresh", headers=ADMIN)

        assert response.status_code == 202
        assert response.json() == {"job_id": "scheduled-7", "status": "skipped"}
        queue.enqueue.assert_not_called()

    def test_job_status(self, client, monkeypatch):
        job = MagicMock(id="job-1", is_finished=True)
        job.get_status.return_value = JobStatus.FINISHED
        job.return_value.return_value = {"status": "completed", "fetched": 12}

        class FakeJob:
            @classmethod
            def fetch(cls, job_id, connection=None):
                if job_id != "job-1":
                    raise NoSuchJobError(job_id)
                return job

        monkeypatch.setattr(admin_router, "Job", FakeJob)

        response = client.get("/v1/admin/refresh/job-1", headers=ADMIN)
        assert response.json() == {
            "job_id": "job-1",
            "status": "finished",
            "result": {"status": "completed", "fetched": 12},
        }
        assert client.get("/v1/admin/refresh/nope", headers=ADMIN).status_code == 404

    def test_schedule(self, client, monkeypatch):
        monkeypatch.setattr(admin_router, "get_scheduled_jobs_info", lambda: [{"id": "s1"}])
        assert client.get("/v1/admin/refresh/schedule", headers=ADMIN).json() == {"jobs": [{"id": "s1"}]}


class TestAdminCuration:

    def test_category_lifecycle(self, client):
        created = client.post("/v1/admin/categories", json={"name": "Power Tools"}, headers=ADMIN)
        assert created.status_code == 201
        category = created.json()
        assert category["slug"] == "power-tools"

        duplicate = client.post("/v1/admin/categories", json={"name": "Power Tools"}, headers=ADMIN)
        assert duplicate.status_code == 409

        updated = client.put(
            f"/v1/admin/categories/{category['id']}", json={"is_active": False}, headers=ADMIN
        )
        assert updated.json()["is_active"] is False
        assert client.get("/v1/deals/categories").json() == {"categories": []}

        missing = client.put("/v1/admin/categories/999", json={"name": "X"}, headers=ADMIN)
        assert missing.status_code == 404

    def test_feature_toggle(self, client, seeded, cache, fake_redis):
        cache.set(cache.deals_list_key({"page": 1}), {"deals": []})

        response = client.put(
            f"/v1/admin/deals/{seeded['B']}/feature", json={"is_featured": True}, headers=ADMIN
        )

        assert response.status_code == 200
        assert response.json()["is_featured"] is True
        assert fake_redis.store == {}
        listing = client.get("/v1/deals", params={"show_all": True}).json()["deals"]
        assert listing[0]["sku"] == "B"

        missing = client.put("/v1/admin/deals/99999/feature", json={"is_featured": True}, headers=ADMIN)
        assert missing.status_code == 404

    def test_logs(self, client, activity):
        activity.log("api", "Fetched 10 deals", {"fetched": 10})
        activity.log("error", "Data refresh failed", {"error": "timeout"})

        all_logs = client.get("/v1/admin/logs", headers=ADMIN).json()
        assert all_logs["count"] == 2
        assert all_logs["logs"][0]["type"] == "error"

        errors = client.get("/v1/admin/logs", params={"type": "error"}, headers=ADMIN).json()
        assert [entry["message"] for entry in errors["logs"]] == ["Data refresh failed"]

        assert client.get("/v1/admin/logs", params={"type": "bogus"}, headers=ADMIN).status_code == 422
        assert client.get("/v1/admin/logs", params={"limit": 5000}, headers=ADMIN).status_code == 422


class TestHealth:

    def test_healthy(self, client, monkeypatch):
        monkeypatch.setattr(main, "UPSTREAM_API_TOKEN", "apify_api_test")
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_degraded_without_cache(self, client, monkeypatch, fake_redis):
        monkeypatch.setattr(main, "UPSTREAM_API_TOKEN", "apify_api_test")
        fake_redis.fail = True

        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_unhealthy_without_database(self, client, monkeypatch):
        broken = MagicMock()
        broken.return_value.execute.side_effect = SQLAlchemyError("connection refused")
        monkeypatch.setattr(main, "SessionLocal", broken)

        response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["database"]["connected"] is False
