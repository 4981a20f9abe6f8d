"""
tests/test_web_app.py — FastAPI boundary exercised through TestClient.

The controller runs on a ManualScheduler so responses are deterministic;
the virtual clock is advanced between requests where a result is needed.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from ui.web_app import create_app


@pytest.fixture()
def client(controller):
    with TestClient(create_app(controller)) as c:
        yield c


def _upload(data: bytes, name: str = "street.png", mime: str = "image/png") -> dict:
    return {"file": (name, data, mime)}


class TestHealthAndState:

    def test_health(self, client) -> None:
        body = client.get("/health").json()
        assert body == {"status": "ok", "state": "IDLE", "clients": 0}

    def test_state_idle(self, client) -> None:
        body = client.get("/state").json()
        assert body["state"] == "IDLE"
        assert body["image"] is None


class TestSubmit:

    def test_accepted(self, client, scheduler, png_bytes) -> None:
        resp = client.post("/submit", files=_upload(png_bytes))
        assert resp.status_code == 202
        body = resp.json()
        assert body["state"] == "PROCESSING"
        assert body["image"]["width"] == 64
        assert body["detection"] is None

        scheduler.advance(3.0)
        done = client.get("/state").json()
        assert done["state"] == "COMPLETE"
        assert done["reasoning"]["action"] in {"STOP", "GO", "CAUTION", "SLOW_DOWN"}

    def test_non_image_content_type(self, client, controller, png_bytes) -> None:
        resp = client.post("/submit", files=_upload(png_bytes, "notes.txt", "text/plain"))
        assert resp.status_code == 415
        assert controller.uri_registry.created_count == 0

    def test_undecodable_image(self, client, controller) -> None:
        resp = client.post("/submit", files=_upload(b"not really a png"))
        assert resp.status_code == 422
        assert resp.json() == {"error": "invalid_input", "reason": "unrecognised_image"}
        assert controller.current_state().state.value == "IDLE"

    def test_too_large(self, controller, png_bytes) -> None:
        with TestClient(create_app(controller, max_upload_bytes=16)) as small:
            resp = small.post("/submit", files=_upload(png_bytes))
        assert resp.status_code == 413
        assert resp.json()["limit_bytes"] == 16

    def test_closed_controller(self, client, controller, png_bytes) -> None:
        controller.shutdown()
        resp = client.post("/submit", files=_upload(png_bytes))
        assert resp.status_code == 503
        assert client.get("/health").json()["status"] == "closed"


class TestImagesAndReset:

    def test_live_image_then_released(self, client, png_bytes) -> None:
        handle_id = client.post("/submit", files=_upload(png_bytes)).json()["image"]["handle_id"]
        resp = client.get(f"/images/{handle_id}")
        assert resp.status_code == 200
        assert resp.content == png_bytes
        assert resp.headers["content-type"] == "image/png"

        body = client.post("/reset").json()
        assert body["state"] == "IDLE"
        assert client.get(f"/images/{handle_id}").status_code == 404

    def test_unknown_image(self, client) -> None:
        assert client.get("/images/img-000000000000").status_code == 404


class TestWebSocket:

    def test_initial_snapshot(self, client) -> None:
        with client.websocket_connect("/ws") as ws:
            msg = ws.receive_json()
        assert msg["type"] == "snapshot"
        assert msg["state"] == "IDLE"

    def test_reset_action_pushes_state(self, client, png_bytes) -> None:
        client.post("/submit", files=_upload(png_bytes))
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["state"] == "PROCESSING"
            ws.send_json({"action": "reset"})
            msg = ws.receive_json()
        assert msg["type"] == "state"
        assert msg["state"] == "IDLE"
