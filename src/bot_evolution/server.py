"""HTTP front end exposing the coordinator protocol to remote workers."""

from __future__ import annotations

import logging
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import ujson as json

from .coordinator import Coordinator, QuotaInvariantError
from .trials import TrialResult

logger = logging.getLogger(__name__)


class CoordinatorServer:
    """One long-lived endpoint per run; each generation installs its Coordinator.

    Routes:

    * ``POST /start``  -> ``{"ok": true, "trial": {...}}`` or ``{"ok": false, ...}``
    * ``POST /result`` -> ``{"accepted": true, "duplicate": bool}``; a resent identical
      result is acknowledged again, 409 for stale or conflicting results
    * ``GET /status``  -> generation counters plus ``done`` once the run finished
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8765) -> None:
        self._lock = threading.Lock()
        self._coordinator: Coordinator | None = None
        # Kept so a retried result for the generation just closed is still acknowledged.
        self._previous: Coordinator | None = None
        self._done = False
        self._thread: threading.Thread | None = None
        self._httpd = ThreadingHTTPServer((host, port), _make_handler(self))
        self._httpd.daemon_threads = True

    @property
    def address(self) -> tuple[str, int]:
        host, port = self._httpd.server_address[:2]
        return str(host), int(port)

    @property
    def url(self) -> str:
        host, port = self.address
        return f"http://{host}:{port}"

    def install(self, coordinator: Coordinator) -> None:
        with self._lock:
            if self._coordinator is not None and self._coordinator is not coordinator:
                self._previous = self._coordinator
            self._coordinator = coordinator
        logger.info(
            "Serving generation %d (quota %d)", coordinator.generation, coordinator.initial_quota
        )

    def finish(self) -> None:
        with self._lock:
            self._done = True

    def start(self) -> CoordinatorServer:
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._httpd.serve_forever, name="coordinator-http", daemon=True
            )
            self._thread.start()
            logger.info("Coordinator listening on %s", self.url)
        return self

    def shutdown(self) -> None:
        self.finish()
        if self._thread is not None:
            self._httpd.shutdown()
            self._thread.join()
            self._thread = None
        self._httpd.server_close()

    def __enter__(self) -> CoordinatorServer:
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    def handle_start(self) -> tuple[int, dict[str, Any]]:
        with self._lock:
            coordinator, done = self._coordinator, self._done
        if done or coordinator is None:
            generation = coordinator.generation if coordinator is not None else -1
            return HTTPStatus.OK, {"ok": False, "generation": generation, "done": done}
        payload = coordinator.request_start().to_json()
        payload["done"] = False
        return HTTPStatus.OK, payload

    def handle_result(self, body: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        with self._lock:
            coordinator, previous = self._coordinator, self._previous
        try:
            result = TrialResult.from_json(body)
        except (KeyError, TypeError, ValueError) as exc:
            return HTTPStatus.BAD_REQUEST, {"accepted": False, "error": f"bad payload: {exc}"}
        if coordinator is None:
            return HTTPStatus.CONFLICT, {"accepted": False, "error": "no active generation"}
        if previous is not None and result.generation == previous.generation:
            coordinator = previous
        try:
            recorded = coordinator.submit_result(result)
        except QuotaInvariantError as exc:
            logger.error("Rejected result for trial %s: %s", result.trial_index, exc)
            return HTTPStatus.CONFLICT, {"accepted": False, "error": str(exc)}
        return HTTPStatus.OK, {"accepted": True, "duplicate": not recorded}

    def handle_status(self) -> tuple[int, dict[str, Any]]:
        with self._lock:
            coordinator, done = self._coordinator, self._done
        if coordinator is None:
            return HTTPStatus.OK, {"generation": None, "done": done}
        payload = coordinator.status()
        payload["done"] = done
        return HTTPStatus.OK, payload


def _make_handler(server: CoordinatorServer) -> type[BaseHTTPRequestHandler]:
    class Handler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"

        def do_GET(self) -> None:  # noqa: N802 - http.server naming
            if self.path.rstrip("/") == "/status":
                self._reply(*server.handle_status())
            else:
                self._reply(HTTPStatus.NOT_FOUND, {"error": f"unknown route {self.path}"})

        def do_POST(self) -> None:  # noqa: N802 - http.server naming
            route = self.path.rstrip("/")
            if route == "/start":
                self._read_body()
                self._reply(*server.handle_start())
            elif route == "/result":
                body = self._read_body()
                if body is None:
                    self._reply(HTTPStatus.BAD_REQUEST, {"accepted": False, "error": "bad json"})
                else:
                    self._reply(*server.handle_result(body))
            else:
                self._reply(HTTPStatus.NOT_FOUND, {"error": f"unknown route {self.path}"})

        def _read_body(self) -> dict[str, Any] | None:
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length) if length > 0 else b""
            if not raw:
                return {}
            try:
                data = json.loads(raw)
            except ValueError:
                return None
            return data if isinstance(data, dict) else None

        def _reply(self, status: int, payload: dict[str, Any]) -> None:
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            logger.debug("%s - %s", self.address_string(), format % args)

    return Handler
