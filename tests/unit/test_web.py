"""
Unit tests for the HTTP API.

Tests cover:
- Scan routes and next_token passing
- Error status mapping for client and upstream failures
- Per-request cancellation on shutdown and caller disconnect
- Rate limiting and the exempt health route
- The JSON metrics route
- Serving real requests from a background server
"""

from __future__ import annotations

import json
import socket
import threading
from typing import Any
from unittest.mock import ANY, MagicMock, patch
from urllib.error import HTTPError
from urllib.request import urlopen

import pytest

from leakcheck.correlation import ScanSurface
from leakcheck.errors import DownloadError, ScanCancelledError, TokenDecodeError
from leakcheck.models import FoundSecretInLambda, Secret, SecretsInLambda
from leakcheck.observability import LeakcheckMetrics
from leakcheck.web import InFlightScans, LeakcheckRequestHandler, LeakcheckServer, RateLimiter


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def scan_result() -> SecretsInLambda:
    """Return one page with a single finding."""
    secret = Secret(name="db", arn="arn:db", key="password", value="pw123")
    return SecretsInLambda(
        found_secrets=[
            FoundSecretInLambda(secrets=[secret], lambda_name="f1", lambda_arn="arn:f1")
        ],
        next_token="",
    )


@pytest.fixture
def correlator(scan_result) -> MagicMock:
    """Return a mock correlator."""
    mock = MagicMock()
    mock.scan.return_value = scan_result
    return mock


@pytest.fixture
def handler(correlator, metrics):
    """Create a request handler without a socket."""
    with patch.object(LeakcheckRequestHandler, "__init__", lambda x: None):
        h = LeakcheckRequestHandler()
        h.correlator = correlator
        h.rate_limiter = None
        h.metrics = metrics
        h.in_flight = InFlightScans()
        h.send_response = MagicMock()
        h.send_header = MagicMock()
        h.end_headers = MagicMock()
        h.wfile = MagicMock()
        yield h


def _get(handler, path: str) -> tuple[int, dict[str, Any]]:
    """Run a GET through the handler and decode the response."""
    handler.path = path
    handler.do_GET()
    status = handler.send_response.call_args.args[0]
    body = handler.wfile.write.call_args.args[0]
    return status, json.loads(body)


# =============================================================================
# Handler Tests
# =============================================================================


class TestScanRoutes:
    """Tests for the scan endpoints."""

    def test_environment_scan(self, handler, correlator):
        """Test the environment route returns the page as JSON."""
        status, body = _get(handler, "/getExposedSecretsInEnv")

        assert status == 200
        assert body["next_token"] == ""
        assert body["found_secrets"][0]["lambda_name"] == "f1"
        assert body["found_secrets"][0]["secrets"][0] == {
            "Name": "db",
            "ARN": "arn:db",
            "key": "password",
            "value": "pw123",
        }
        correlator.scan.assert_called_once_with(ScanSurface.ENV, "", ANY)

    def test_code_scan_passes_token(self, handler, correlator):
        """Test the code route forwards next_token."""
        status, _ = _get(handler, "/getExposedSecretsInCode?next_token=abc%3D")

        assert status == 200
        correlator.scan.assert_called_once_with(ScanSurface.CODE, "abc=", ANY)

    def test_json_content_type(self, handler):
        """Test responses are sent as JSON."""
        _get(handler, "/getExposedSecretsInEnv")

        handler.send_header.assert_any_call("Content-Type", "application/json")

    def test_bad_token_is_400(self, handler, correlator):
        """Test a malformed token is a client error."""
        correlator.scan.side_effect = TokenDecodeError("failed to decode token")

        status, body = _get(handler, "/getExposedSecretsInEnv?next_token=***")

        assert status == 400
        assert body["error"] == "TokenDecodeError"

    def test_upstream_error_is_500(self, handler, correlator):
        """Test scan failures are server errors naming the entity."""
        correlator.scan.side_effect = DownloadError("failed to download file", entity="f1")

        status, body = _get(handler, "/getExposedSecretsInCode")

        assert status == 500
        assert body == {
            "error": "DownloadError",
            "message": "failed to download file",
            "entity": "f1",
        }

    def test_unexpected_error_is_500(self, handler, correlator):
        """Test unexpected exceptions do not leak details."""
        correlator.scan.side_effect = RuntimeError("secret internals")

        status, body = _get(handler, "/getExposedSecretsInEnv")

        assert status == 500
        assert "secret internals" not in json.dumps(body)

    def test_unknown_route(self, handler):
        """Test unknown paths are 404."""
        status, _ = _get(handler, "/nope")

        assert status == 404

    def test_missing_correlator(self, handler):
        """Test scans are unavailable without a correlator."""
        handler.correlator = None

        status, _ = _get(handler, "/getExposedSecretsInEnv")

        assert status == 503


class TestRequestCancellation:
    """Tests for per-request cancel events."""

    def test_each_request_gets_its_own_event(self, handler, correlator, scan_result):
        """Test scans receive distinct events that are forgotten afterwards."""
        events = []
        tracked = []

        def scan(surface, token, cancel_event):
            events.append(cancel_event)
            tracked.append(len(handler.in_flight))
            return scan_result

        correlator.scan.side_effect = scan

        _get(handler, "/getExposedSecretsInEnv")
        _get(handler, "/getExposedSecretsInCode")

        assert tracked == [1, 1]
        assert events[0] is not events[1]
        assert not any(e.is_set() for e in events)
        assert len(handler.in_flight) == 0

    def test_cancel_all_reaches_running_scan(self, handler, correlator):
        """Test shutting down sets the event of a scan in progress."""
        seen = []

        def scan(surface, token, cancel_event):
            handler.in_flight.cancel_all()
            seen.append(cancel_event.is_set())
            raise ScanCancelledError("scan cancelled")

        correlator.scan.side_effect = scan

        status, body = _get(handler, "/getExposedSecretsInEnv")

        assert seen == [True]
        assert status == 500
        assert body["error"] == "ScanCancelledError"

    def test_caller_gone_before_response(self, handler, metrics):
        """Test a broken connection while responding is recorded, not raised."""
        handler.wfile.write.side_effect = BrokenPipeError()
        handler.path = "/getExposedSecretsInEnv"

        handler.do_GET()

        requests = metrics.backend.summary()["api.requests"]
        assert requests[0]["tags"]["status"] == "499"

    def test_no_registry(self, handler, correlator):
        """Test a handler without a registry still passes an event."""
        handler.in_flight = None

        status, _ = _get(handler, "/getExposedSecretsInEnv")

        assert status == 200
        assert isinstance(correlator.scan.call_args.args[2], threading.Event)


class TestInFlightScans:
    """Tests for InFlightScans."""

    def test_closed_registry_hands_out_set_events(self):
        """Test events created after closing start cancelled until reopened."""
        in_flight = InFlightScans()
        in_flight.cancel_all()

        with in_flight.track() as event:
            assert event.is_set()

        in_flight.reopen()
        with in_flight.track() as event:
            assert not event.is_set()
        assert not in_flight.closed

    def test_untracked_after_exit(self):
        """Test events leave the registry when the request ends."""
        in_flight = InFlightScans()

        with in_flight.track():
            assert len(in_flight) == 1

        assert len(in_flight) == 0


class TestRateLimiting:
    """Tests for request rate limiting."""

    def test_rejects_over_limit(self, handler, correlator):
        """Test requests beyond the limit get 429 with Retry-After."""
        handler.rate_limiter = MagicMock()
        handler.rate_limiter.allow.return_value = False
        handler.rate_limiter.retry_after.return_value = 1

        status, body = _get(handler, "/getExposedSecretsInEnv")

        assert status == 429
        assert body["error"] == "RateLimitExceeded"
        handler.send_header.assert_any_call("Retry-After", "1")
        correlator.scan.assert_not_called()

    def test_health_is_exempt(self, handler):
        """Test the health route ignores the limiter."""
        handler.rate_limiter = MagicMock()
        handler.rate_limiter.allow.return_value = False

        status, body = _get(handler, "/health")

        assert status == 200
        assert body["status"] == "ok"


class TestMetricsRoute:
    """Tests for the metrics endpoint."""

    def test_requests_are_counted(self, handler, metrics):
        """Test each request is recorded and visible on /metrics."""
        _get(handler, "/getExposedSecretsInEnv")
        _get(handler, "/nope")

        status, body = _get(handler, "/metrics")

        assert status == 200
        requests = {
            (e["tags"]["endpoint"], e["tags"]["status"]): e["value"]
            for e in body["metrics"]["api.requests"]
        }
        assert requests[("/getExposedSecretsInEnv", "200")] == 1
        assert requests[("other", "404")] == 1

    def test_non_memory_backend(self, handler):
        """Test other backends report their type only."""
        handler.metrics = LeakcheckMetrics(backend=MagicMock())

        status, body = _get(handler, "/metrics")

        assert status == 200
        assert body["metrics"] == {}
        assert body["backend"] == "MagicMock"


# =============================================================================
# Server Tests
# =============================================================================


class TestLeakcheckServer:
    """Tests for LeakcheckServer."""

    def test_serves_requests(self, correlator, metrics):
        """Test a background server answers scan requests."""
        server = LeakcheckServer(
            correlator,
            host="127.0.0.1",
            port=0,
            rate_limiter=RateLimiter(rate=0),
            metrics=metrics,
        )
        server.start_background()
        try:
            with urlopen(f"{server.url}/getExposedSecretsInEnv", timeout=5) as response:
                body = json.loads(response.read())
            assert response.status == 200
            assert body["found_secrets"][0]["lambda_name"] == "f1"

            with pytest.raises(HTTPError) as exc_info:
                urlopen(f"{server.url}/missing", timeout=5)
            assert exc_info.value.code == 404
        finally:
            server.stop()

        assert server.in_flight.closed

    def test_rate_limited_server(self, correlator, metrics):
        """Test the server enforces its limiter."""
        server = LeakcheckServer(
            correlator,
            host="127.0.0.1",
            port=0,
            rate_limiter=RateLimiter(rate=0.001, burst=1),
            metrics=metrics,
        )
        server.start_background()
        try:
            urlopen(f"{server.url}/getExposedSecretsInEnv", timeout=5).close()
            with pytest.raises(HTTPError) as exc_info:
                urlopen(f"{server.url}/getExposedSecretsInEnv", timeout=5)
            assert exc_info.value.code == 429
            assert exc_info.value.headers["Retry-After"]
        finally:
            server.stop()

    def test_handler_class_is_bound_per_server(self, correlator):
        """Test two servers do not share collaborators."""
        a = LeakcheckServer(correlator, port=0)
        b = LeakcheckServer(MagicMock(), port=0)

        handler_a = a._handler_class()
        handler_b = b._handler_class()

        assert handler_a.correlator is correlator
        assert handler_b.correlator is not correlator
        assert handler_a.in_flight is a.in_flight
        assert handler_a.in_flight is not handler_b.in_flight
        assert LeakcheckRequestHandler.correlator is None

    def test_caller_disconnect_cancels_scan(self, correlator, metrics):
        """Test a caller hanging up mid-scan sets that request's event."""
        started = threading.Event()
        cancelled = threading.Event()

        def scan(surface, token, cancel_event):
            started.set()
            if cancel_event.wait(5):
                cancelled.set()
            raise ScanCancelledError("scan cancelled")

        correlator.scan.side_effect = scan
        server = LeakcheckServer(
            correlator,
            host="127.0.0.1",
            port=0,
            rate_limiter=RateLimiter(rate=0),
            metrics=metrics,
        )
        server.start_background()
        try:
            client = socket.create_connection(("127.0.0.1", server.port), timeout=5)
            client.sendall(b"GET /getExposedSecretsInEnv HTTP/1.0\r\n\r\n")
            assert started.wait(5)
            client.close()

            assert cancelled.wait(5)
            assert not server.in_flight.closed
        finally:
            server.stop()
