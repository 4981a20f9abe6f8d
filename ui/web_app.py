"""
ui/web_app.py — FastAPI boundary for DriveSense.

Accepts uploaded images, exposes the pipeline snapshot, serves live images
by handle id, and streams state changes to browsers over a WebSocket.

REST endpoints
--------------
GET  /health              JSON health check
GET  /state               Current pipeline snapshot
POST /submit              multipart ``file`` → start a pipeline run (202)
POST /reset               Return the pipeline to IDLE
GET  /images/{handle_id}  Live image bytes (404 once released)

WebSocket
---------
ws://<host>:<port>/ws

Messages pushed by server (JSON):
  {"type": "state",    "state": "PROCESSING", "image": {...}, ...}
  {"type": "rejected", "reason": "unrecognised_image"}
"""

from __future__ import annotations

import asyncio
import json
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from fastapi import FastAPI, File, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response

from core.constants import C
from core.logger import get_logger
from perception.image_handle import InvalidInputError
from pipeline.controller import (
    ON_INPUT_REJECTED,
    ON_STATE_CHANGED,
    PipelineClosedError,
    PipelineController,
)


class _Bridge:
    """EventBus → WebSocket fan-out for one app instance."""

    def __init__(self) -> None:
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.clients: Set[WebSocket] = set()
        self.lock = threading.Lock()

    def push(self, msg: Dict[str, Any]) -> None:
        """Thread-safe push of a JSON message to every connected client."""
        if self.loop is None or self.loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self._broadcast(msg), self.loop)

    async def _broadcast(self, msg: Dict[str, Any]) -> None:
        text = json.dumps(msg)
        with self.lock:
            clients = list(self.clients)
        dead: List[WebSocket] = []
        for ws in clients:
            try:
                await ws.send_text(text)
            except Exception:  # noqa: BLE001
                dead.append(ws)
        if dead:
            with self.lock:
                for ws in dead:
                    self.clients.discard(ws)


def create_app(
    controller: PipelineController,
    max_upload_bytes: Optional[int] = None,
) -> FastAPI:
    """
    Build a FastAPI app bound to *controller*.

    Args:
        controller: Pipeline owner; the app never mutates it except through
            ``submit`` / ``reset``.
        max_upload_bytes: Upload size limit; defaults to
            ``controller.config.web.max_upload_bytes``.
    """
    limit = max_upload_bytes or controller.config.web.max_upload_bytes
    bridge = _Bridge()

    def _on_state_changed(data: Dict[str, Any]) -> None:
        bridge.push({"type": "state", **data["snapshot"].to_dict()})

    def _on_rejected(data: Dict[str, Any]) -> None:
        bridge.push({"type": "rejected", "reason": data.get("reason", "")})

    @asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        bridge.loop = asyncio.get_running_loop()
        controller.subscribe(ON_STATE_CHANGED, _on_state_changed)
        controller.subscribe(ON_INPUT_REJECTED, _on_rejected)
        get_logger().info("web_app", "startup", {})
        try:
            yield
        finally:
            controller.unsubscribe(ON_STATE_CHANGED, _on_state_changed)
            controller.unsubscribe(ON_INPUT_REJECTED, _on_rejected)
            bridge.loop = None
            get_logger().info("web_app", "shutdown", {})

    app = FastAPI(title="DriveSense", version="1.0", lifespan=_lifespan)
    app.state.controller = controller
    app.state.bridge = bridge

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({
            "status": "closed" if controller.closed else "ok",
            "state": controller.current_state().state.value,
            "clients": len(bridge.clients),
        })

    @app.get("/state")
    def state() -> JSONResponse:
        return JSONResponse(controller.current_state().to_dict())

    @app.post("/submit")
    def submit(file: UploadFile = File(...)) -> JSONResponse:
        claimed = (file.content_type or "").lower()
        if not claimed.startswith(C.IMAGE_MIME_PREFIX):
            get_logger().warn("web_app", "upload_not_image", {"content_type": claimed})
            return JSONResponse(
                {"error": "unsupported_media_type", "content_type": claimed},
                status_code=415,
            )

        data = file.file.read(limit + 1)
        if len(data) > limit:
            return JSONResponse(
                {"error": "payload_too_large", "limit_bytes": limit},
                status_code=413,
            )

        try:
            controller.submit(data, mime_type=claimed)
        except InvalidInputError as exc:
            return JSONResponse(
                {"error": "invalid_input", "reason": exc.reason},
                status_code=422,
            )
        except PipelineClosedError:
            return JSONResponse({"error": "controller_closed"}, status_code=503)

        return JSONResponse(controller.current_state().to_dict(), status_code=202)

    @app.post("/reset")
    def reset() -> JSONResponse:
        return JSONResponse(controller.reset(reason="web_reset").to_dict())

    @app.get("/images/{handle_id}")
    def image(handle_id: str) -> Response:
        snap = controller.current_state()
        if snap.image is None or snap.image.handle_id != handle_id:
            return JSONResponse({"error": "not_found"}, status_code=404)
        payload = controller.uri_registry.resolve(snap.image.display_uri)
        if payload is None:
            return JSONResponse({"error": "not_found"}, status_code=404)
        return Response(content=payload, media_type=snap.image.mime_type)

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        with bridge.lock:
            bridge.clients.add(ws)

        await ws.send_text(json.dumps({
            "type": "snapshot",
            **controller.current_state().to_dict(),
        }))
        get_logger().info("web_app", "ws_connected", {"total": len(bridge.clients)})

        try:
            while True:
                msg = await ws.receive_text()
                try:
                    data = json.loads(msg)
                except json.JSONDecodeError:
                    continue
                if isinstance(data, dict) and data.get("action") == "reset":
                    await asyncio.to_thread(controller.reset, "ws_reset")
        except WebSocketDisconnect:
            pass
        finally:
            with bridge.lock:
                bridge.clients.discard(ws)
            get_logger().info("web_app", "ws_disconnected", {"total": len(bridge.clients)})

    return app


def start_web_server(
    controller: PipelineController,
    host: str = "0.0.0.0",
    port: int = 7860,
) -> None:
    """
    Serve *controller* over HTTP with uvicorn in the current thread (blocking).

    Args:
        controller: Fully initialised :class:`~pipeline.controller.PipelineController`.
        host:       Bind address.
        port:       TCP port.
    """
    import uvicorn  # type: ignore

    app = create_app(controller)
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    get_logger().info("web_app", "server_start", {"host": host, "port": port})
    server.run()
