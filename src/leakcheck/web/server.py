"""
HTTP server for leakcheck.

A thin JSON shell around the two scan operations:

    GET /getExposedSecretsInEnv?next_token=...
    GET /getExposedSecretsInCode?next_token=...

plus /metrics and /health. Each scan request handles exactly one page;
callers resume with the returned next_token until it comes back empty.
"""

from __future__ import annotations

import json
import logging
import select
import socket
import threading
import time
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Iterator
from urllib.parse import parse_qs, urlparse

from leakcheck import __version__
from leakcheck.correlation import ExposureCorrelator, ScanSurface
from leakcheck.errors import LeakcheckError
from leakcheck.observability.metrics import (
    InMemoryMetricsBackend,
    LeakcheckMetrics,
    get_metrics,
)
from leakcheck.web.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

# Seconds between checks for a caller that hung up mid-scan
DISCONNECT_POLL_INTERVAL = 0.2

SCAN_ROUTES = {
    "/getExposedSecretsInEnv": ScanSurface.ENV,
    "/getExposedSecretsInCode": ScanSurface.CODE,
}


class InFlightScans:
    """
    Cancel events of the scan requests a server is handling.

    Each request gets its own event. Closing sets every tracked event and
    any event handed out afterwards, so no scan outlives the server.
    """

    def __init__(self):
        self._events: set[threading.Event] = set()
        self._lock = threading.Lock()
        self._closed = False

    @contextmanager
    def track(self) -> Iterator[threading.Event]:
        """Hand out a cancel event for one request and forget it afterwards."""
        event = threading.Event()
        with self._lock:
            if self._closed:
                event.set()
            self._events.add(event)
        try:
            yield event
        finally:
            with self._lock:
                self._events.discard(event)

    def cancel_all(self) -> None:
        """Cancel every in-flight scan and refuse new ones."""
        with self._lock:
            self._closed = True
            for event in self._events:
                event.set()

    def reopen(self) -> None:
        with self._lock:
            self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class LeakcheckRequestHandler(BaseHTTPRequestHandler):
    """
    HTTP request handler for the scan API.

    Collaborators are class attributes, bound by LeakcheckServer on a
    per-server subclass.
    """

    server_version = f"leakcheck/{__version__}"

    correlator: ExposureCorrelator | None = None
    rate_limiter: RateLimiter | None = None
    metrics: LeakcheckMetrics | None = None
    in_flight: InFlightScans | None = None

    def do_GET(self):
        """Handle GET requests."""
        start = time.perf_counter()
        parsed = urlparse(self.path)
        path = parsed.path
        params = parse_qs(parsed.query)

        try:
            status = self._route(path, params)
        except (BrokenPipeError, ConnectionResetError):
            logger.debug(f"Caller disconnected before the {path} response was sent")
            status = 499

        endpoint = path if path in SCAN_ROUTES or path in ("/metrics", "/health") else "other"
        self._get_metrics().api_request(
            endpoint, "GET", status, time.perf_counter() - start
        )

    def _route(self, path: str, params: dict[str, list[str]]) -> int:
        """
        Dispatch a request and send the response.

        Returns:
            HTTP status code sent
        """
        if path == "/health":
            return self._send_json({"status": "ok", "version": __version__})

        if self.rate_limiter is not None and not self.rate_limiter.allow():
            return self._send_error(
                429,
                {"error": "RateLimitExceeded", "message": "rate limit exceeded"},
                headers={"Retry-After": str(self.rate_limiter.retry_after())},
            )

        if path in SCAN_ROUTES:
            return self._handle_scan(SCAN_ROUTES[path], params)
        if path == "/metrics":
            return self._send_json(self._get_metrics_summary())

        return self._send_error(404, {"error": "NotFound", "message": "not found"})

    def _handle_scan(self, surface: ScanSurface, params: dict[str, list[str]]) -> int:
        """Run one scan page and send its JSON response."""
        if self.correlator is None:
            return self._send_error(
                503, {"error": "Unavailable", "message": "scanner not configured"}
            )

        token = params.get("next_token", [""])[0]

        try:
            with self._request_cancel_event() as cancel_event:
                result = self.correlator.scan(surface, token, cancel_event)
        except LeakcheckError as e:
            code = 400 if e.client_error else 500
            logger.warning(f"{surface.value} scan failed with {code}: {e}")
            return self._send_error(code, e.to_dict())
        except Exception:
            logger.exception(f"Unexpected error during {surface.value} scan")
            return self._send_error(
                500, {"error": "InternalError", "message": "internal server error"}
            )

        return self._send_json(result.to_dict())

    @contextmanager
    def _request_cancel_event(self) -> Iterator[threading.Event]:
        """
        Cancel event for this request.

        The event is set when the server stops or when the caller closes
        its connection before the response is sent.
        """
        if self.in_flight is not None:
            scope = self.in_flight.track()
        else:
            scope = _untracked_event()

        with scope as event:
            done = threading.Event()
            connection = getattr(self, "connection", None)
            if isinstance(connection, socket.socket):
                threading.Thread(
                    target=_watch_disconnect,
                    args=(connection, event, done),
                    daemon=True,
                ).start()
            try:
                yield event
            finally:
                done.set()

    def _get_metrics(self) -> LeakcheckMetrics:
        return self.metrics or get_metrics()

    def _get_metrics_summary(self) -> dict[str, Any]:
        """Summarize in-memory metrics."""
        backend = self._get_metrics().backend
        if isinstance(backend, InMemoryMetricsBackend):
            return {"metrics": backend.summary()}
        return {"metrics": {}, "backend": type(backend).__name__}

    def _send_json(self, data: dict[str, Any], status: int = 200) -> int:
        """Send JSON response."""
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)
        return status

    def _send_error(
        self,
        code: int,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> int:
        """Send error response."""
        body = json.dumps(payload, default=str).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)
        return code

    def log_message(self, format: str, *args):
        """Route access logs through the leakcheck logger."""
        logger.debug("%s - %s", self.address_string(), format % args)


@contextmanager
def _untracked_event() -> Iterator[threading.Event]:
    yield threading.Event()


def _watch_disconnect(
    connection: socket.socket, cancel_event: threading.Event, done: threading.Event
) -> None:
    """Set cancel_event if the peer hangs up before done is set."""
    while not done.is_set():
        try:
            readable, _, _ = select.select([connection], [], [], DISCONNECT_POLL_INTERVAL)
            if not readable:
                continue
            if connection.recv(1, socket.MSG_PEEK) == b"":
                logger.debug("Caller disconnected, cancelling scan")
                cancel_event.set()
            # Either gone or pipelining another request; stop watching
            return
        except (OSError, ValueError):
            return


class LeakcheckServer:
    """
    HTTP server for the scan API.

    Serves requests on a thread per connection. Each scan request has
    its own cancel event; stopping the server sets all of them.
    """

    def __init__(
        self,
        correlator: ExposureCorrelator,
        host: str = "0.0.0.0",
        port: int = 1323,
        rate_limiter: RateLimiter | None = None,
        metrics: LeakcheckMetrics | None = None,
    ):
        """
        Initialize the server.

        Args:
            correlator: Correlator serving the scan routes
            host: Host to bind to (default: 0.0.0.0)
            port: Port to listen on (default: 1323, 0 picks a free port)
            rate_limiter: Global request limiter (default: none)
            metrics: Metrics sink (default: process metrics)
        """
        self.host = host
        self.port = port
        self.correlator = correlator
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.in_flight = InFlightScans()
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def _handler_class(self) -> type[LeakcheckRequestHandler]:
        """Build a handler class bound to this server's collaborators."""
        return type(
            "BoundLeakcheckRequestHandler",
            (LeakcheckRequestHandler,),
            {
                "correlator": self.correlator,
                "rate_limiter": self.rate_limiter,
                "metrics": self.metrics,
                "in_flight": self.in_flight,
            },
        )

    def bind(self) -> ThreadingHTTPServer:
        """Create and bind the underlying HTTP server."""
        if self._server is None:
            self.in_flight.reopen()
            self._server = ThreadingHTTPServer((self.host, self.port), self._handler_class())
            self._server.daemon_threads = True
            self.port = self._server.server_address[1]
        return self._server

    def start(self):
        """
        Start the HTTP server (blocking).

        This method blocks until the server is stopped.
        """
        server = self.bind()
        logger.info(f"Serving leakcheck on {self.url}")
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass
        finally:
            self.in_flight.cancel_all()
            server.server_close()

    def start_background(self) -> threading.Thread:
        """
        Start server in background thread.

        Returns:
            Thread running the server
        """
        self.bind()
        self._thread = threading.Thread(target=self.start, daemon=True)
        self._thread.start()
        return self._thread

    def stop(self):
        """Stop the server and cancel in-flight scans."""
        self.in_flight.cancel_all()
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def url(self) -> str:
        """Get the server URL."""
        return f"http://{self.host}:{self.port}"


def serve(config: Any | None = None, session: Any | None = None) -> None:
    """
    Build a correlator from configuration and serve it until interrupted.

    Args:
        config: ServerConfig (default: loaded from the environment)
        session: Optional boto3 Session
    """
    from leakcheck.config import load_config_from_env
    from leakcheck.correlation import build_correlator

    config = config or load_config_from_env()
    server = LeakcheckServer(
        correlator=build_correlator(config, session=session),
        host=config.host,
        port=config.port,
        rate_limiter=RateLimiter(config.rate_limit_per_second, config.rate_limit_burst),
    )
    server.start()
