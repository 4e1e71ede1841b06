"""Tests for the HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from reelforge.project.models import AssetKind
from reelforge.server import create_app
from reelforge.workflow.pipeline import MediaPipeline

from conftest import FakeConcatenator, FakeProvider, FakeRenderFunction, FakeVisionClient, verdict

SCENES = [
    {"scene_id": "one", "duration": 30, "narration": "First.", "visual_direction": "A field"},
    {"scene_id": "two", "duration": 30, "narration": "Second.", "visual_direction": "A forest"},
]


@pytest.fixture
def client(config, store, tracker):
    config.quality.enabled = False
    pipeline = MediaPipeline(
        config=config,
        providers={
            "alpha": FakeProvider("alpha", [AssetKind.IMAGE]),
            "voicer": FakeProvider("voicer", [AssetKind.VOICE]),
        },
        store=store,
        vision=FakeVisionClient([verdict(90)]),
        render_function=FakeRenderFunction(),
        concatenator=FakeConcatenator(),
        tracker=tracker,
    )
    with TestClient(create_app(pipeline)) as test_client:
        yield test_client


def _sse_events(body):
    events = []
    for frame in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in frame.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["providers"] == ["alpha", "voicer"]
    assert body["quality_analysis"] is False


def test_create_generate_render_flow(client):
    created = client.post("/projects", json={"scenes": SCENES, "aspect_ratio": "9:16"})
    assert created.status_code == 201
    project_id = created.json()["project_id"]

    generated = client.post(f"/projects/{project_id}/generate")
    assert generated.status_code == 200
    assert generated.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(generated.text)
    assert events[-1][0] == "project.ready"
    assert {name for name, _ in events} >= {"scene.generated", "scene.cached"}
    assert events[0][1]["projectId"] == project_id

    rendered = client.post(f"/projects/{project_id}/render")
    assert rendered.status_code == 202
    job_id = rendered.json()["job_id"]

    status = client.get(f"/status/{job_id}").json()
    assert status["status"] in ("rendering", "complete")
    project_status = client.get(f"/status/{project_id}").json()
    assert job_id in project_status["render_job_ids"]

    streamed = client.get(f"/renders/{job_id}/events")
    assert streamed.headers["content-type"].startswith("text/event-stream")
    render_events = _sse_events(streamed.text)
    assert [name for name, _ in render_events] == ["chunk.rendered", "chunk.rendered", "job.complete"]
    assert sorted(payload["data"]["index"] for _, payload in render_events[:2]) == [1, 2]


def test_invalid_storyboard_is_rejected(client):
    assert client.post("/projects", json={"scenes": []}).status_code == 422
    assert client.post("/projects", json={"scenes": [{"duration": -1}]}).status_code == 422
    bad_ratio = client.post("/projects", json={"scenes": SCENES, "aspect_ratio": "5:4"})
    assert bad_ratio.status_code == 409
    assert bad_ratio.json()["error"] == "ValidationError"


def test_unknown_resources_are_404(client):
    assert client.get("/status/proj_nope").status_code == 404
    assert client.post("/projects/proj_nope/generate").status_code == 404
    assert client.get("/renders/render_nope/events").status_code == 404


def test_render_before_generation_conflicts(client):
    project_id = client.post("/projects", json={"scenes": SCENES}).json()["project_id"]
    response = client.post(f"/projects/{project_id}/render")
    assert response.status_code == 409


def test_cancel_and_regenerate_conflict(client):
    project_id = client.post("/projects", json={"scenes": SCENES}).json()["project_id"]

    cancelled = client.post(f"/projects/{project_id}/cancel").json()

    assert cancelled == {"project_id": project_id, "cancelled": True}
    assert client.get(f"/status/{project_id}").json()["status"] == "cancelled"
    assert client.post(f"/projects/{project_id}/generate").status_code == 409
