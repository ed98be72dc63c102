from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from conftest import NOW, USER_ID, image_bytes
from svc_vton.api.deps import (
    get_current_user_id,
    get_generations_repo,
    get_job_updates_service,
    get_orchestrator,
    get_profile_service,
)
from svc_vton.config import settings
from svc_vton import main
from svc_vton.main import create_app
from svc_vton.services.asset_snapshotter import AssetSnapshotter
from svc_vton.services.generation_orchestrator import GenerationOrchestrator
from svc_vton.services.job_updates_service import JobUpdatesService
from svc_vton.services.profile_service import ProfileService

GID = "00000000-0000-4000-8000-000000000001"
SECRET = "unit-test-signing-secret-0123456789abcdef"


@pytest.fixture
def app(profiles, generations, storage, job_runner, id_factory):
    app = create_app()
    orchestrator = GenerationOrchestrator(
        profiles=profiles,
        generations=generations,
        snapshotter=AssetSnapshotter(storage),
        job_runner=job_runner,
        now=lambda: NOW,
        id_factory=id_factory,
    )
    app.dependency_overrides[get_current_user_id] = lambda: USER_ID
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_generations_repo] = lambda: generations
    app.dependency_overrides[get_job_updates_service] = lambda: JobUpdatesService(generations)
    app.dependency_overrides[get_profile_service] = lambda: ProfileService(profiles, storage)
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def _create(client, garment, **fields):
    data = {"consentVersion": "v1"}
    data.update(fields)
    return client.post(
        "/api/vton/generations",
        files={"garment": ("shirt.png", garment, "image/png")},
        data=data,
    )


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_generation(client, garment_png):
    r = _create(client, garment_png, retainForHours="24")

    assert r.status_code == 202
    assert r.headers["Location"] == f"/api/vton/generations/{GID}"
    body = r.json()
    assert body["id"] == GID
    assert body["status"] == "queued"
    assert body["vertexJobId"] == "jobs/123"
    assert body["etaSeconds"] == 90
    assert body["quota"] == {"remainingFree": 2}
    assert body["garmentSnapshotPath"].endswith("/shirt.png")
    assert body["personaSnapshotPath"].endswith("/persona.png")
    assert body["expiresAt"].startswith("2026-03-02T12:00:00")


@pytest.mark.parametrize("value", ["abc", "48.5", "96"])
def test_create_rejects_bad_retention(client, garment_png, job_runner, value):
    r = _create(client, garment_png, retainForHours=value)

    assert r.status_code == 400
    assert r.headers["Cache-Control"] == "no-store"
    error = r.json()["error"]
    assert error["code"] == "invalid_request"
    assert error["requestId"]
    assert job_runner.calls == []


def test_create_consent_mismatch(client, garment_png, storage):
    r = _create(client, garment_png, consentVersion="v2")

    assert r.status_code == 403
    assert r.json()["error"]["code"] == "consent_mismatch"
    assert storage.uploads == []


def test_create_unsupported_garment(client):
    r = client.post(
        "/api/vton/generations",
        files={"garment": ("shirt.gif", image_bytes(512, 512, "GIF"), "image/gif")},
        data={"consentVersion": "v1"},
    )

    assert r.status_code == 400
    error = r.json()["error"]
    assert error["details"]["reason"] == "unsupported_mime"


def test_create_without_file(client):
    r = client.post("/api/vton/generations", data={"consentVersion": "v1"})

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"


def test_create_vertex_failure(app, client, garment_png, generations, job_runner):
    job_runner.error = RuntimeError("503 from runner")

    r = _create(client, garment_png)

    assert r.status_code == 502
    assert r.json()["error"]["code"] == "vertex_failure"
    assert generations.rows[GID]["vertex_job_id"] is None


def test_get_generation(client, generations):
    generations.add(GID, status="processing", vertex_job_id="jobs/1", started_at=NOW)

    r = client.get(f"/api/vton/generations/{GID}")

    assert r.status_code == 200
    assert r.headers["Cache-Control"] == "no-store"
    body = r.json()
    assert body["status"] == "processing"
    assert body["vertexJobId"] == "jobs/1"
    assert body["garmentSnapshotPath"].endswith("/shirt.png")
    assert body["rating"] is None


@pytest.mark.parametrize("gid", [GID, "not-a-uuid"])
def test_get_generation_not_found(client, gid):
    r = client.get(f"/api/vton/generations/{gid}")

    assert r.status_code == 404
    assert r.json()["error"]["code"] == "not_found"


def test_other_users_generation_is_hidden(client, generations):
    generations.add(GID, user_id="5c6e1b2a-0000-4000-8000-000000000000")

    assert client.get(f"/api/vton/generations/{GID}").status_code == 404


def test_rate_succeeded_generation(client, generations):
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    generations.add(GID, status="succeeded", result_path="r.png", expires_at=future)

    r = client.post(f"/api/vton/generations/{GID}/rating", json={"rating": 4})

    assert r.status_code == 200
    body = r.json()
    assert body["id"] == GID
    assert body["rating"] == 4
    assert body["ratedAt"]
    assert generations.rows[GID]["user_rating"] == 4


@pytest.mark.parametrize(
    "status,expires_in",
    [("queued", timedelta(hours=1)), ("failed", timedelta(hours=1)), ("succeeded", timedelta(hours=-1))],
)
def test_rate_requires_live_success(client, generations, status, expires_in):
    generations.add(GID, status=status, result_path="r.png", expires_at=datetime.now(timezone.utc) + expires_in)

    r = client.post(f"/api/vton/generations/{GID}/rating", json={"rating": 5})

    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_state"


def test_rating_out_of_range(client, generations):
    generations.add(GID, status="succeeded")

    r = client.post(f"/api/vton/generations/{GID}/rating", json={"rating": 9})

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"


def test_webhook_requires_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "VERTEX_WEBHOOK_SECRET", "s3cret")

    r = client.post(
        "/api/vton/webhooks/vertex",
        json={"jobId": "jobs/1", "state": "succeeded"},
        headers={"X-Vertex-Webhook-Secret": "wrong"},
    )

    assert r.status_code == 401
    assert r.json()["error"]["code"] == "unauthorized"


def test_webhook_applies_update(client, generations, monkeypatch):
    monkeypatch.setattr(settings, "VERTEX_WEBHOOK_SECRET", "s3cret")
    generations.add(GID, vertex_job_id="jobs/1", status="processing", started_at=NOW)

    r = client.post(
        "/api/vton/webhooks/vertex",
        json={"jobId": "jobs/1", "state": "SUCCEEDED", "outputUri": "gs://results/users/u/r.png"},
        headers={"X-Vertex-Webhook-Secret": "s3cret"},
    )

    assert r.status_code == 200
    assert r.json() == {"acknowledged": True, "applied": True, "status": "succeeded"}
    assert generations.rows[GID]["result_path"] == "users/u/r.png"


def test_webhook_unknown_job(client, monkeypatch):
    monkeypatch.setattr(settings, "VERTEX_WEBHOOK_SECRET", "s3cret")

    r = client.post(
        "/api/vton/webhooks/vertex",
        json={"jobId": "jobs/nope", "state": "failed"},
        headers={"X-Vertex-Webhook-Secret": "s3cret"},
    )

    assert r.status_code == 404


def test_profile_consent_and_persona_flow(client, profiles):
    new_user = "3f0d5c1a-8b8e-4a55-9a43-5d2f3b1c0e77"
    client.app.dependency_overrides[get_current_user_id] = lambda: new_user

    profile = client.get("/api/profile").json()
    assert profile["consent"]["isCompliant"] is False
    assert profile["quota"]["remaining"] == 3
    assert profile["persona"] is None

    persona = ("me.png", image_bytes(1024, 1024), "image/png")
    assert client.post("/api/profile/persona", files={"persona": persona}).status_code == 403

    consent = client.post("/api/profile/consent", json={"version": "v1"})
    assert consent.status_code == 200
    assert consent.json()["isCompliant"] is True

    uploaded = client.post("/api/profile/persona", files={"persona": persona})
    assert uploaded.status_code == 201
    assert uploaded.json()["persona"]["path"] == f"users/{new_user}/persona/persona.png"

    assert client.get("/api/profile").json()["persona"]["width"] == 1024


def test_consent_with_stale_version(client):
    r = client.post("/api/profile/consent", json={"version": "v0"})

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"


def test_bearer_token_is_required(app, monkeypatch):
    app.dependency_overrides.pop(get_current_user_id)
    monkeypatch.setattr(settings, "JWT_SECRET", SECRET)
    client = TestClient(app)

    assert client.get(f"/api/vton/generations/{GID}").status_code == 401

    token = jwt.encode({"sub": "not-a-uuid"}, SECRET, algorithm="HS256")
    r = client.get(f"/api/vton/generations/{GID}", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_valid_bearer_token(app, generations, monkeypatch):
    app.dependency_overrides.pop(get_current_user_id)
    monkeypatch.setattr(settings, "JWT_SECRET", SECRET)
    monkeypatch.setattr(settings, "JWT_ISSUER", "")
    monkeypatch.setattr(settings, "JWT_AUDIENCE", "")
    generations.add(GID)
    token = jwt.encode({"sub": USER_ID}, SECRET, algorithm="HS256")

    r = TestClient(app).get(f"/api/vton/generations/{GID}", headers={"Authorization": f"Bearer {token}"})

    assert r.status_code == 200


def test_lifespan_opens_and_closes_the_pool(monkeypatch):
    events = []

    async def fake_get_pool():
        events.append("open")

    async def fake_close_pool():
        events.append("close")

    monkeypatch.setattr(main, "get_pool", fake_get_pool)
    monkeypatch.setattr(main, "close_pool", fake_close_pool)
    monkeypatch.setattr(main, "configure_logging", lambda: events.append("logging"))

    with TestClient(create_app()) as client:
        assert client.get("/health").status_code == 200
        assert events == ["logging", "open"]

    assert events == ["logging", "open", "close"]
