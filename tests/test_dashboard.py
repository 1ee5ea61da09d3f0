import pytest

pytest.importorskip("litestar")
from litestar.testing import TestClient

from grantflow.client import Client
from grantflow.config import EngineSettings
from grantflow.dashboard import create_dashboard_app
from grantflow.scheduler import ScheduleTriggerLayer, StaticWorkSource
from grantflow.server.engine import JobQueueEngine


@pytest.fixture
def client(memory_storage, clock):
    engine = JobQueueEngine(memory_storage, settings=EngineSettings(), clock=clock)
    return Client(engine=engine)


@pytest.fixture
def http(client):
    with TestClient(app=create_dashboard_app(client)) as test_client:
        yield test_client


def test_enqueue_and_fetch_job(http):
    response = http.post(
        "/jobs",
        json={"job_type": "crawl_grant_source", "payload": {"sourceId": "abc"}, "priority": 9},
    )
    assert response.status_code == 201
    job_id = response.json()["job_id"]

    details = http.get(f"/jobs/{job_id}")
    assert details.status_code == 200
    body = details.json()
    assert body["job_type"] == "crawl_grant_source"
    assert body["payload"] == {"sourceId": "abc"}
    assert body["priority"] == 9
    assert body["status"] == "pending"

    history = http.get(f"/jobs/{job_id}/history").json()
    assert [h["state"] for h in history] == ["pending"]


def test_enqueue_requires_job_type(http):
    assert http.post("/jobs", json={"payload": {}}).status_code == 400
    assert http.post("/jobs", json={"job_type": "x", "payload": [1]}).status_code == 400


def test_unknown_job_is_404(http):
    assert http.get("/jobs/missing").status_code == 404
    assert http.get("/jobs/missing/history").status_code == 404
    assert http.post("/jobs/missing/cancel").status_code == 404


def test_cancel_job(http, client):
    job_id = client.enqueue("crawl_grant_source", {"sourceId": "abc"})

    response = http.post(f"/jobs/{job_id}/cancel")
    assert response.status_code == 200
    assert response.json() == {"cancelled": True}
    assert http.post(f"/jobs/{job_id}/cancel").json() == {"cancelled": False}

    failed = http.get("/jobs", params={"status": "failed"}).json()
    assert [j["id"] for j in failed] == [job_id]
    assert failed[0]["error_message"] == "Cancelled by user"


def test_list_jobs_validates_status(http, client):
    client.enqueue("cleanup_old_data", {})
    assert len(http.get("/jobs").json()) == 1
    assert http.get("/jobs", params={"status": "exploded"}).status_code == 400
    assert http.get("/jobs", params={"page": 0}).status_code == 400


def test_stats(http, client):
    client.engine.register_handler("crawl_grant_source", lambda job: None)
    client.enqueue("crawl_grant_source", {})
    client.enqueue("crawl_grant_source", {})
    client.engine.run_once()
    client.enqueue("crawl_grant_source", {})

    body = http.get("/stats").json()
    assert body["counts"] == {
        "pending": 1,
        "processing": 0,
        "completed": 2,
        "failed": 0,
        "retry": 0,
    }
    assert body["last_24h"]["completed"]["count"] == 2
    assert body["last_24h"]["pending"]["count"] == 1


def test_health_reports_stopped_engine(http, client):
    response = http.get("/health")
    assert response.status_code == 503
    assert response.json()["store"] is True
    assert response.json()["engine"] is False


def test_health_ok_while_running(memory_storage):
    engine = JobQueueEngine(memory_storage, settings=EngineSettings(poll_interval=0.05))
    client = Client(engine=engine)
    engine.start()
    try:
        with TestClient(app=create_dashboard_app(client)) as http:
            response = http.get("/health")
            assert response.status_code == 200
            assert response.json()["healthy"] is True
    finally:
        engine.stop()


def test_scheduler_status(client):
    with TestClient(app=create_dashboard_app(client)) as http:
        assert http.get("/scheduler").status_code == 404

    client.scheduler = ScheduleTriggerLayer(client, StaticWorkSource())
    with TestClient(app=create_dashboard_app(client)) as http:
        body = http.get("/scheduler").json()
    assert body == {"is_running": False, "active_trigger_count": 0, "triggers": []}


def test_enqueue_with_scheduled_at(http, clock):
    response = http.post(
        "/jobs",
        json={"job_type": "cleanup_old_data", "scheduled_at": "2026-01-05T17:30:00+05:00"},
    )
    assert response.status_code == 201

    body = http.get(f"/jobs/{response.json()['job_id']}").json()
    assert body["scheduled_at"] == "2026-01-05T12:30:00+00:00"


def test_enqueue_rejects_bad_fields(http, client):
    bad_bodies = [
        {"job_type": "crawl_grant_source", "priority": "9"},
        {"job_type": "crawl_grant_source", "max_retries": -1},
        {"job_type": "crawl_grant_source", "scheduled_at": "tomorrow"},
    ]
    for body in bad_bodies:
        assert http.post("/jobs", json=body).status_code == 400
    assert client.get_state_counts()["pending"] == 0
