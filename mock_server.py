"""
mock_server.py: Self-contained mock storage backend + JSON test bridge.

Ports
-----
50052  gRPC  ModelStorage  (this server plays the persistent store)
 8080  HTTP  JSON API (browser / curl facing)

The HTTP handlers call VelocityService on localhost:50051 as a gRPC client.

Startup order
-------------
1. python mock_server.py   # ModelStorage gRPC on 50052, JSON API on 8080
2. python main.py          # velocity service connects to 50052, serves on 50051
3. curl http://localhost:8080/api/recommendations?user_id=alice

No extra dependencies: uses only grpcio and protobuf plus Python stdlib.
"""

from __future__ import annotations

import json
import logging
import socketserver
import threading
import time
from concurrent import futures
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

import grpc
from google.protobuf.struct_pb2 import Struct

from velocity.service import SERVICE_NAME
from velocity.storage import STORAGE_SERVICE, InMemoryModelStorage, from_struct, to_struct

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MOCK_GRPC_PORT: int = 50052
HTTP_PORT: int = 8080
VELOCITY_GRPC_ADDR: str = "localhost:50051"
GRPC_MAX_WORKERS: int = 10

logger = logging.getLogger("mock_server")

_storage = InMemoryModelStorage()


# ---------------------------------------------------------------------------
# ModelStorage gRPC servicer
# ---------------------------------------------------------------------------


class MockModelStorageServicer:
    """Implements ModelStorage on top of an :class:`InMemoryModelStorage`."""

    def __init__(self, storage: InMemoryModelStorage) -> None:
        self._storage = storage

    def LoadUserModel(self, request: Struct, context: Any) -> Struct:
        user_id = str(from_struct(request).get("user_id", ""))
        state = self._storage.load_user_model(user_id)
        logger.info("LoadUserModel: user=%r found=%s", user_id, state is not None)
        if state is None:
            return to_struct({"found": False})
        return to_struct({"found": True, "state": state})

    def SaveUserModel(self, request: Struct, context: Any) -> Struct:
        payload = from_struct(request)
        user_id = str(payload.get("user_id", ""))
        if not user_id:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details("user_id required")
            return Struct()
        self._storage.save_user_model(user_id, payload.get("state") or {})
        logger.info("SaveUserModel: user=%r", user_id)
        return Struct()


def _build_grpc_server() -> grpc.Server:
    servicer = MockModelStorageServicer(_storage)
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=Struct.FromString,
            response_serializer=Struct.SerializeToString,
        )
        for name in ("LoadUserModel", "SaveUserModel")
    }
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=GRPC_MAX_WORKERS))
    server.add_generic_rpc_handlers(
        (grpc.method_handlers_generic_handler(STORAGE_SERVICE, handlers),)
    )
    server.add_insecure_port(f"0.0.0.0:{MOCK_GRPC_PORT}")
    return server


def _run_grpc_server(server: grpc.Server) -> None:
    server.start()
    logger.info("ModelStorage gRPC server listening on port %d", MOCK_GRPC_PORT)
    server.wait_for_termination()


# ---------------------------------------------------------------------------
# gRPC client helpers (calls VelocityService on port 50051)
# ---------------------------------------------------------------------------

_channel: grpc.Channel | None = None
_channel_lock = threading.Lock()


def _get_channel() -> grpc.Channel:
    global _channel
    with _channel_lock:
        if _channel is None:
            _channel = grpc.insecure_channel(VELOCITY_GRPC_ADDR)
        return _channel


def call_velocity(method: str, payload: dict[str, Any]) -> tuple[dict[str, Any], str | None]:
    """Call one VelocityService RPC. Returns ``(response, error)``."""
    rpc = _get_channel().unary_unary(
        f"/{SERVICE_NAME}/{method}",
        request_serializer=Struct.SerializeToString,
        response_deserializer=Struct.FromString,
    )
    try:
        return from_struct(rpc(to_struct(payload), timeout=5.0)), None
    except grpc.RpcError as exc:
        logger.warning("%s failed: %s", method, exc)
        return {}, f"velocity service error: {exc.code().name} {exc.details()}"


# ---------------------------------------------------------------------------
# HTTP server
# ---------------------------------------------------------------------------


class _ThreadingHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    """Each HTTP request is handled in its own thread.

    Required because each handler blocks on a gRPC call to the velocity service.
    """

    daemon_threads = True


def _send_json(handler: BaseHTTPRequestHandler, data: Any, status: int = 200) -> None:
    body = json.dumps(data).encode()
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json")
    handler.send_header("Content-Length", str(len(body)))
    handler.send_header("Access-Control-Allow-Origin", "*")
    handler.end_headers()
    handler.wfile.write(body)


def _send_error(handler: BaseHTTPRequestHandler, msg: str, status: int = 400) -> None:
    _send_json(handler, {"error": msg}, status=status)


# POST route -> VelocityService method
_POST_ROUTES: dict[str, str] = {
    "/api/activity": "RecordActivity",
    "/api/raw-activity": "RecordRawActivity",
    "/api/task": "RecordTaskCompletion",
    "/api/error": "RecordError",
    "/api/feedback": "RecordInterventionFeedback",
    "/api/reset": "ResetUser",
    "/api/reset-session": "ResetSession",
}

# GET route -> VelocityService method
_GET_ROUTES: dict[str, str] = {
    "/api/recommendations": "GetRecommendations",
    "/api/state": "GetModelState",
    "/api/idle": "CheckIdle",
}


class MockServerHTTPHandler(BaseHTTPRequestHandler):
    """HTTP handler exposing a JSON bridge to VelocityService.

    Routes
    ------
    GET  /api/recommendations?user_id=X[&hour=H]
    GET  /api/state?user_id=X
    GET  /api/idle?user_id=X
    GET  /api/stored            User ids held by the mock storage
    POST /api/activity          body: {user_id, metrics: {...}}
    POST /api/raw-activity      body: {user_id, activity_type, clicks, ...}
    POST /api/task              body: {user_id, task_id, duration, complexity?}
    POST /api/error             body: {user_id, error_type}
    POST /api/feedback          body: {user_id, type, accepted, velocity_before, ...}
    POST /api/reset             body: {user_id}
    POST /api/reset-session     body: {user_id}
    """

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        # Suppress per-request stdout noise; errors still reach the logger
        pass

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)
        path = parsed.path

        if path == "/api/stored":
            _send_json(self, {"user_ids": _storage.user_ids()})
            return
        method = _GET_ROUTES.get(path)
        if method is None:
            _send_error(self, "Not found", status=404)
            return
        uid = (params.get("user_id") or [""])[0].strip()
        if not uid:
            _send_error(self, "user_id query parameter required")
            return
        payload: dict[str, Any] = {"user_id": uid}
        hour = (params.get("hour") or [""])[0].strip()
        if hour:
            if not hour.isdigit():
                _send_error(self, "hour must be an integer")
                return
            payload["hour"] = int(hour)
        self._forward(method, payload)

    def do_POST(self) -> None:
        method = _POST_ROUTES.get(urlparse(self.path).path)
        if method is None:
            _send_error(self, "Not found", status=404)
            return
        try:
            length = int(self.headers.get("Content-Length", 0))
            body = json.loads(self.rfile.read(length) or b"{}")
        except ValueError as exc:
            _send_error(self, f"Invalid JSON: {exc}")
            return
        if not isinstance(body, dict) or not str(body.get("user_id", "")).strip():
            _send_error(self, "user_id required")
            return
        self._forward(method, body)

    def _forward(self, method: str, payload: dict[str, Any]) -> None:
        response, err = call_velocity(method, payload)
        if err:
            _send_error(self, err, status=502)
        else:
            _send_json(self, response)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Start the ModelStorage gRPC server and the HTTP JSON bridge.

    Startup order:
    1. gRPC ModelStorage on port 50052 (daemon thread).
    2. HTTP JSON API on port 8080 (main thread, blocks until Ctrl-C).

    Then start ``python main.py`` in a separate terminal.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    grpc_server = _build_grpc_server()
    grpc_thread = threading.Thread(
        target=_run_grpc_server,
        args=(grpc_server,),
        name="grpc-modelstorage",
        daemon=True,
    )
    grpc_thread.start()
    time.sleep(0.3)  # let the gRPC port bind before main.py tries to connect

    http_server = _ThreadingHTTPServer(("0.0.0.0", HTTP_PORT), MockServerHTTPHandler)
    logger.info("JSON API available at  http://localhost:%d", HTTP_PORT)
    logger.info(
        "Expecting velocity service at %s  (start with: python main.py)",
        VELOCITY_GRPC_ADDR,
    )
    try:
        http_server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down.")
        grpc_server.stop(grace=2)


if __name__ == "__main__":
    main()
