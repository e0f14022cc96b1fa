from fastapi.testclient import TestClient

from asgsync.api import create_app
from asgsync.reconciler import Reconciler

from .conftest import FakeGateway, FakeProvider


def _client(upstream, members, servers=None):
    rec = Reconciler(FakeProvider([upstream], members), FakeGateway(servers), dry_run=False)
    return rec, TestClient(create_app(rec))


def test_health(api_upstream):
    _, client = _client(api_upstream, {"g1": set()})
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy", "reconciler_running": False}


def test_upstreams_before_and_after_sync(api_upstream):
    _, client = _client(api_upstream, {"g1": {"10.0.0.1"}}, {("api", "http"): ["10.0.0.3:80"]})

    (row,) = client.get("/upstreams").json()
    assert row["name"] == "api"
    assert row["scaling_group"] == "g1"
    assert row["last_sync"] is None

    r = client.post("/sync")
    assert r.status_code == 200
    (result,) = r.json()
    assert result["ok"] is True
    assert result["added"] == ["10.0.0.1:80"]
    assert result["removed"] == ["10.0.0.3:80"]

    (row,) = client.get("/upstreams").json()
    assert row["last_sync"]["added"] == ["10.0.0.1:80"]


def test_events_endpoint(api_upstream):
    _, client = _client(api_upstream, {"g1": {"10.0.0.1"}})
    client.post("/sync")

    events = client.get("/events", params={"upstream": "api", "limit": 5}).json()
    assert events
    assert all(e["upstream"] == "api" for e in events)

    assert client.get("/events", params={"limit": 0}).status_code == 422
