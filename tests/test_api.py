from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from storyreel.main import storyreel_exception_handler
from storyreel.routers import jobs_router, providers_router
from storyreel.services.project_store import ProjectStore
from storyreel.services.provider_registry import ProviderRegistry
from storyreel.utils.exceptions import StoryReelError


class FakeConsumer:
    def __init__(self):
        self.payloads = []

    async def add(self, payload):
        self.payloads.append(payload)
        return True

    async def stats(self):
        return {"waiting": len(self.payloads), "active": 0, "completed": 0, "failed": 0}



class BrokenConsumer(FakeConsumer):
    async def add(self, payload):
        self.payloads.append(payload)
        raise RuntimeError("database is locked")

@pytest.fixture
def services(tmp_path):
    return SimpleNamespace(
        registry=ProviderRegistry(),
        store=ProjectStore(str(tmp_path / "storyreel.db")),
        consumer=FakeConsumer(),
    )


@pytest.fixture
def client(services):
    app = FastAPI()
    app.include_router(jobs_router)
    app.include_router(providers_router)
    app.add_exception_handler(StoryReelError, storyreel_exception_handler)
    app.state.services = services
    with TestClient(app) as test_client:
        yield test_client


def _body(**overrides):
    body = {
        "videoId": "v1",
        "userId": "u1",
        "providerModelId": "kling-1.6",
        "storyIdea": "A lighthouse keeper befriends a whale",
        "maxScenes": 3,
    }
    body.update(overrides)
    return body


def test_submit_and_poll(client, services):
    response = client.post("/api/jobs", json=_body())
    assert response.status_code == 202
    job = response.json()
    assert job["status"] == "queued"
    assert job["stage"] == "queued"

    payload = services.consumer.payloads[0]
    assert payload.job_id == job["job_id"]
    assert payload.concept == "A lighthouse keeper befriends a whale"

    polled = client.get(f"/api/jobs/{job['job_id']}")
    assert polled.status_code == 200
    assert polled.json()["job_id"] == job["job_id"]


def test_second_job_for_busy_video_conflicts(client, services):
    assert client.post("/api/jobs", json=_body()).status_code == 202

    response = client.post("/api/jobs", json=_body())
    assert response.status_code == 409
    assert response.json()["error"] == "JOB_CONFLICT"
    assert len(services.consumer.payloads) == 1


def test_incompatible_aspect_ratio_is_rejected(client, services):
    response = client.post("/api/jobs", json=_body(providerModelId="nova-reel", aspectRatio="9:16"))
    assert response.status_code == 422
    assert response.json()["error"] == "INCOMPATIBLE_CAPABILITY"
    assert services.consumer.payloads == []


def test_unknown_model_is_not_found(client):
    response = client.post("/api/jobs", json=_body(providerModelId="sora"))
    assert response.status_code == 404


def test_update_scene_requires_scene_number(client):
    response = client.post("/api/jobs", json=_body(type="UPDATE_SCENE"))
    assert response.status_code == 422
    assert response.json()["details"]["fields"][0]["field"] == "sceneNumber"


def test_missing_fields_fail_request_validation(client):
    response = client.post("/api/jobs", json={"videoId": "v1"})
    assert response.status_code == 422


def test_unknown_job(client):
    response = client.get("/api/jobs/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


def test_queue_stats(client):
    client.post("/api/jobs", json=_body())
    assert client.get("/api/jobs/stats/queue").json()["waiting"] == 1


def test_provider_catalogue(client):
    models = client.get("/api/providers").json()["models"]
    assert {m["id"] for m in models} == {"nova-reel", "kling-1.6", "pika-v2.2", "pixverse-v4"}

    fal_only = client.get("/api/providers", params={"provider": "fal"}).json()["models"]
    assert all(m["provider"] == "fal" for m in fal_only)

    assert client.get("/api/providers/nova-reel").json()["capabilities"]["aspect_ratios"] == ["16:9"]


def test_duration_seconds_is_accepted(client, services):
    response = client.post("/api/jobs", json=_body(providerConfig={"durationSeconds": 10}))
    assert response.status_code == 202
    assert services.consumer.payloads[0].provider_config == {"durationSeconds": 10}


def test_unsupported_duration_seconds_is_rejected(client):
    response = client.post("/api/jobs", json=_body(providerModelId="pika-v2.2", providerConfig={"durationSeconds": 10}))
    assert response.status_code == 422
    assert response.json()["error"] == "INCOMPATIBLE_CAPABILITY"


def test_provider_config_cannot_change_the_aspect_ratio(client, services):
    response = client.post(
        "/api/jobs",
        json=_body(aspectRatio="16:9", providerConfig={"aspect_ratio": "9:16"}),
    )
    assert response.status_code == 422
    assert response.json()["details"]["fields"][0]["field"] == "providerConfig.aspect_ratio"
    assert services.consumer.payloads == []


def test_enqueue_failure_releases_the_video(client, services):
    working = services.consumer
    services.consumer = BrokenConsumer()

    with pytest.raises(RuntimeError):
        client.post("/api/jobs", json=_body())

    failed_id = services.consumer.payloads[0].job_id
    failed = client.get(f"/api/jobs/{failed_id}").json()
    assert failed["status"] == "failed"
    assert failed["error"]["code"] == "ENQUEUE_FAILED"

    services.consumer = working
    assert client.post("/api/jobs", json=_body()).status_code == 202
