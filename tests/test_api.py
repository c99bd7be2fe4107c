"""HTTP surface tests through FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from backend.api import main as api
from runner.ingest import pipeline
from runner.ingest.extraction import ExtractionClient
from tests.conftest import ADMIN, SOURCE_URL, FakeLLM, make_fetch

AUTH = {"X-Admin-Key": ADMIN}


@pytest.fixture
def wired(db, monkeypatch):
    """Points the app and the pipeline at the in-memory store and fakes."""
    state = {"html": None}
    monkeypatch.setattr(api, "get_client", lambda: db)
    monkeypatch.setattr(pipeline, "get_client", lambda: db)
    monkeypatch.setattr(pipeline, "ExtractionClient", lambda: ExtractionClient(complete=FakeLLM()))
    monkeypatch.setattr(pipeline, "fetch_html", lambda url: make_fetch(state["html"])(url))
    return state


@pytest.fixture
def http(wired):
    return TestClient(api.app)


def test_health(http):
    assert http.get("/health").json() == {"ok": True}


class TestIngestEndpoint:
    def test_requires_admin(self, http, db):
        r = http.post("/api/ingest", json={"url": SOURCE_URL})
        assert r.status_code == 401
        assert r.json() == {"success": False, "error": "Unauthorized."}
        assert db.rows("ingestion_logs") == []

    def test_auth_checked_before_body(self, http):
        r = http.post("/api/ingest", content=b"{broken", headers={"content-type": "application/json"})
        assert r.status_code == 401

    def test_invalid_json(self, http):
        r = http.post(
            "/api/ingest", content=b"{broken", headers={**AUTH, "content-type": "application/json"}
        )
        assert r.status_code == 400
        assert r.json()["error"] == "Invalid JSON body."

    def test_missing_url(self, http):
        r = http.post("/api/ingest", json={}, headers=AUTH)
        assert r.status_code == 400
        assert r.json()["success"] is False

    def test_created_then_duplicate(self, http, db):
        r = http.post("/api/ingest", json={"url": SOURCE_URL}, headers=AUTH)
        assert r.status_code == 201
        body = r.json()
        assert body["success"] is True
        assert body["slug"] == "acme-launches-model-x"
        assert {e["type"] for e in body["entities"]} == {"company", "model"}

        r = http.post("/api/ingest", json={"url": SOURCE_URL}, headers=AUTH)
        assert r.status_code == 409
        assert r.json()["duplicate"] is True
        assert r.json()["existing_id"] == body["article_id"]
        assert [row["status"] for row in db.rows("ingestion_logs")] == ["success", "duplicate"]

    def test_cookie_credential(self, http):
        r = http.post(
            "/api/ingest", json={"url": SOURCE_URL}, headers={"Cookie": f"{api.ADMIN_COOKIE}={ADMIN}"}
        )
        assert r.status_code == 201

    def test_short_content(self, http, wired, db):
        wired["html"] = "<html><body>Paywall.</body></html>"
        r = http.post("/api/ingest", json={"url": SOURCE_URL}, headers=AUTH)
        assert r.status_code == 422
        assert "too short" in r.json()["error"]
        assert db.rows("articles") == []


class TestLogin:
    def test_wrong_password(self, http):
        r = http.post("/api/admin/login", json={"password": "guess"})
        assert r.status_code == 401

    def test_sets_cookie(self, http):
        r = http.post("/api/admin/login", json={"password": ADMIN})
        assert r.status_code == 200
        assert api.ADMIN_COOKIE in r.headers["set-cookie"]
        assert "httponly" in r.headers["set-cookie"].lower()


class TestArticles:
    def test_admin_create_and_public_list(self, http):
        assert http.post("/api/admin/articles", json={"title": "T", "content": "C"}).status_code == 401

        r = http.post(
            "/api/admin/articles",
            json={"title": "Due", "content": "C", "status": "scheduled", "publish_at": "2000-01-01T00:00:00+00:00"},
            headers=AUTH,
        )
        assert r.status_code == 201
        http.post("/api/admin/articles", json={"title": "Draft", "content": "C"}, headers=AUTH)

        titles = [a["title"] for a in http.get("/api/articles").json()["data"]]
        assert titles == ["Due"]

    def test_invalid_status(self, http):
        r = http.post(
            "/api/admin/articles", json={"title": "T", "content": "C", "status": "live"}, headers=AUTH
        )
        assert r.status_code == 400


class TestClaimsAdmin:
    def test_list_and_review(self, http, db):
        http.post("/api/ingest", json={"url": SOURCE_URL}, headers=AUTH)
        claims = http.get("/api/admin/claims", headers=AUTH).json()["data"]
        assert len(claims) == 2
        rel = next(c for c in claims if c["claim_type"] == "relationship")
        assert rel["subject"]["slug"] == "acme"
        assert rel["object"]["slug"] == "acme-model-x"

        r = http.patch("/api/admin/claims", json={"id": rel["id"], "verification_status": "verified"}, headers=AUTH)
        assert r.status_code == 200
        stored = next(c for c in db.rows("claims") if c["id"] == rel["id"])
        assert stored["verification_status"] == "verified"
        assert stored["updated_by"] == "admin"

    def test_bad_status(self, http):
        r = http.patch("/api/admin/claims", json={"id": "x", "verification_status": "true"}, headers=AUTH)
        assert r.status_code == 400

    def test_unknown_claim(self, http):
        r = http.patch("/api/admin/claims", json={"id": "missing", "verification_status": "disputed"}, headers=AUTH)
        assert r.status_code == 404

    def test_requires_admin(self, http):
        assert http.get("/api/admin/claims").status_code == 401


class TestIngestionLogs:
    def test_filter_by_status(self, http, wired):
        http.post("/api/ingest", json={"url": SOURCE_URL}, headers=AUTH)
        wired["html"] = "<p>short</p>"
        http.post("/api/ingest", json={"url": SOURCE_URL + "/2"}, headers=AUTH)

        logs = http.get("/api/admin/ingestion-logs", headers=AUTH).json()["data"]
        assert sorted(row["status"] for row in logs) == ["fetch_error", "success"]
        failed = http.get("/api/admin/ingestion-logs", params={"status": "fetch_error"}, headers=AUTH).json()["data"]
        assert [row["source_url"] for row in failed] == [SOURCE_URL + "/2"]


class TestGraph:
    def test_entity_graph(self, http):
        http.post("/api/ingest", json={"url": SOURCE_URL}, headers=AUTH)
        g = http.get("/api/graph/acme").json()
        assert g["entity"]["name"] == "Acme"
        [out] = g["relationships_out"]
        assert out["predicate"] == "developed"
        assert out["object"]["slug"] == "acme-model-x"
        assert out["claim"]["revision"] == 1
        [event] = g["timeline"]
        assert event["event_type"] == "release"
        assert event["claim"]["verification_status"] == "auto_extracted"

        model = http.get("/api/graph/acme-model-x").json()
        assert model["entity"]["parent_id"] == g["entity"]["id"]
        assert model["relationships_in"][0]["subject"]["slug"] == "acme"

    def test_unknown_entity(self, http):
        assert http.get("/api/graph/nobody").status_code == 404
