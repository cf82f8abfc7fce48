"""HTTP API server for querying stored site status."""

import hmac
import json
import logging
import threading
import time
from collections import defaultdict
from datetime import UTC, datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, unquote, urlsplit
from zoneinfo import ZoneInfo

from .config import ApiConfig
from .models import RunSummary
from .reports import render_dashboard
from .storage import MAX_METRICS_ENTRIES, StatusStore

logger = logging.getLogger(__name__)

# Number of metrics entries returned by /api/history/<name> unless ?limit= is given.
HISTORY_LIMIT = 100

# Longer names cannot belong to a configured site and are rejected outright.
MAX_SITE_NAME_LENGTH = 200

# Bound on the number of clients tracked by the rate limiter.
MAX_TRACKED_CLIENTS = 10000


class RateLimiter:
    """Simple sliding window rate limiter by IP address.

    Allows up to max_requests requests per IP within the time window.
    Thread-safe for use in multi-threaded HTTP server.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: int = 60,
        max_clients: int = MAX_TRACKED_CLIENTS,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._max_clients = max_clients
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def is_allowed(self, client_ip: str) -> bool:
        """Check if a request from the given IP is allowed.

        Args:
            client_ip: The client's IP address.

        Returns:
            True if the request is allowed, False if rate limited.
        """
        now = time.monotonic()
        cutoff = now - self._window_seconds

        with self._lock:
            if client_ip not in self._requests and len(self._requests) >= self._max_clients:
                self._evict(cutoff)

            timestamps = self._requests[client_ip]
            timestamps[:] = [ts for ts in timestamps if ts > cutoff]

            if len(timestamps) >= self._max_requests:
                return False

            timestamps.append(now)
            return True

    def _evict(self, cutoff: float) -> None:
        """Drop idle clients, then the least recently seen one if still full. Caller holds the lock."""
        self._drop_stale(cutoff)
        if len(self._requests) >= self._max_clients:
            oldest = min(self._requests, key=lambda ip: self._requests[ip][-1])
            del self._requests[oldest]

    def _drop_stale(self, cutoff: float) -> None:
        empty_ips = []
        for ip, timestamps in self._requests.items():
            timestamps[:] = [ts for ts in timestamps if ts > cutoff]
            if not timestamps:
                empty_ips.append(ip)
        for ip in empty_ips:
            del self._requests[ip]

    def cleanup(self) -> None:
        """Remove stale entries from the rate limiter."""
        cutoff = time.monotonic() - self._window_seconds
        with self._lock:
            self._drop_stale(cutoff)

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._requests)


class ApiError(Exception):
    """Raised when the API server cannot be started."""

    pass


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class StatusHandler(BaseHTTPRequestHandler):
    """HTTP request handler for status API endpoints."""

    # Class-level references set by factory
    store: Optional[StatusStore] = None
    api_key: Optional[str] = None  # required on /api/* when set
    allowed_origins: tuple = ()
    rate_limiter: Optional[RateLimiter] = None
    tz: Optional[ZoneInfo] = None
    started_at: float = 0.0
    version: str = ""

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("API %s - %s", self.address_string(), format % args)

    def _check_rate_limit(self) -> bool:
        """Check if the request should be rate limited.

        Returns:
            True if request is allowed, False if rate limited.
            Sends 429 response automatically if rate limited.
        """
        if self.rate_limiter is None:
            return True

        client_ip = self.client_address[0]
        if not self.rate_limiter.is_allowed(client_ip):
            logger.warning("Rate limit exceeded for %s", client_ip)
            self._send_error_json(429, "Too many requests")
            return False
        return True

    def _is_authorized(self, query: Dict[str, List[str]]) -> bool:
        if not self.api_key:
            return True
        provided = self.headers.get("X-API-Key") or (query.get("api_key") or [""])[0]
        return hmac.compare_digest(provided.encode("utf-8"), self.api_key.encode("utf-8"))

    def _send_cors_headers(self) -> None:
        origin = self.headers.get("Origin")
        if not origin:
            return
        if "*" in self.allowed_origins:
            self.send_header("Access-Control-Allow-Origin", "*")
        elif origin in self.allowed_origins:
            self.send_header("Access-Control-Allow-Origin", origin)
            self.send_header("Vary", "Origin")
        else:
            return
        self.send_header("Access-Control-Allow-Methods", "GET, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type, X-API-Key")

    def _send_body(self, code: int, content_type: str, body: bytes) -> None:
        self.send_response(code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-cache")
        self.send_header("Connection", "close")
        self._send_cors_headers()
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _send_json(self, code: int, data: Dict[str, Any]) -> None:
        """Send a JSON response with the given status code."""
        self._send_body(code, "application/json", json.dumps(data, indent=2).encode("utf-8"))

    def _send_error_json(self, code: int, message: str) -> None:
        """Send a JSON error response."""
        self._send_json(code, {"error": message})

    def _send_html(self, code: int, html: str) -> None:
        """Send an HTML response with the given status code."""
        self._send_body(code, "text/html; charset=utf-8", html.encode("utf-8"))

    def do_OPTIONS(self) -> None:
        """Handle CORS preflight requests."""
        self.send_response(200)
        self.send_header("Content-Length", "0")
        self.send_header("Connection", "close")
        self._send_cors_headers()
        self.end_headers()

    def do_GET(self) -> None:
        """Handle GET requests."""
        if not self._check_rate_limit():
            return

        parts = urlsplit(self.path)
        path = parts.path.rstrip("/") or "/"
        query = parse_qs(parts.query)

        try:
            if path in ("/", "/dashboard"):
                self._handle_dashboard()
            elif path == "/health":
                self._handle_health()
            elif path.startswith("/api/"):
                if not self._is_authorized(query):
                    logger.warning("Unauthorized API request from %s", self.address_string())
                    self._send_error_json(401, "Unauthorized")
                    return
                self._route_api(path, query)
            else:
                self._send_error_json(404, "Not found")
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            self._send_error_json(500, "Internal server error")

    def _route_api(self, path: str, query: Dict[str, List[str]]) -> None:
        if path == "/api/status":
            self._handle_status_all()
        elif path == "/api/summary":
            self._handle_summary()
        elif path.startswith("/api/status/"):
            name = self._site_name_from(path, "/api/status/")
            if name is not None:
                self._handle_status_by_name(name)
        elif path.startswith("/api/history/"):
            name = self._site_name_from(path, "/api/history/")
            if name is not None:
                self._handle_history_by_name(name, query)
        else:
            self._send_error_json(404, "Not found")

    def _site_name_from(self, path: str, prefix: str) -> Optional[str]:
        """Extract the site name after prefix, or send 400 and return None."""
        name = unquote(path[len(prefix):])
        if not name:
            self._send_error_json(400, "Website name is required")
            return None
        if len(name) > MAX_SITE_NAME_LENGTH:
            self._send_error_json(400, "Website name too long")
            return None
        return name

    def _handle_dashboard(self) -> None:
        """Handle GET / and /dashboard - server-rendered HTML dashboard."""
        reports = self.store.load_all_reports()
        self._send_html(200, render_dashboard(reports, self.store, self.tz))

    def _handle_health(self) -> None:
        """Handle GET /health endpoint."""
        self._send_json(
            200,
            {
                "status": "healthy",
                "uptime": round(time.monotonic() - self.started_at, 3),
                "timestamp": _timestamp(),
                "version": self.version,
                "monitoredSites": len(self.store.load_all_reports()),
            },
        )

    def _handle_status_all(self) -> None:
        """Handle GET /api/status endpoint."""
        reports = self.store.load_all_reports()
        self._send_json(
            200,
            {
                "sites": [report.to_dict() for report in reports],
                "summary": RunSummary.from_reports(reports).to_dict(),
                "timestamp": _timestamp(),
            },
        )

    def _handle_summary(self) -> None:
        """Handle GET /api/summary endpoint."""
        summary = RunSummary.from_reports(self.store.load_all_reports())
        self._send_json(
            200,
            {
                "total": summary.total,
                "up": summary.up,
                "down": summary.down,
                "uptime": summary.uptime_percentage,
                "timestamp": _timestamp(),
            },
        )

    def _handle_status_by_name(self, name: str) -> None:
        """Handle GET /api/status/<name> endpoint."""
        report = self.store.load_previous(name)
        # Guard against a status file written under another name.
        if report is None or report.site_name != name:
            self._send_error_json(404, "Website not found")
            return
        self._send_json(200, report.to_dict())

    def _handle_history_by_name(self, name: str, query: Dict[str, List[str]]) -> None:
        """Handle GET /api/history/<name>?limit=N endpoint."""
        raw_limit = (query.get("limit") or [str(HISTORY_LIMIT)])[0]
        try:
            limit = int(raw_limit)
        except ValueError:
            self._send_error_json(400, "limit must be an integer")
            return
        if not 1 <= limit <= MAX_METRICS_ENTRIES:
            self._send_error_json(400, f"limit must be between 1 and {MAX_METRICS_ENTRIES}")
            return

        report = self.store.load_previous(name)
        if report is None or report.site_name != name:
            self._send_error_json(404, "Website not found")
            return

        metrics = self.store.load_metrics(name, limit=limit)
        self._send_json(
            200,
            {
                "name": name,
                "metrics": [entry.to_dict() for entry in metrics],
                "count": len(metrics),
                "trends": self.store.calculate_trends(name).to_dict(),
            },
        )


def _create_handler_class(
    store: StatusStore,
    config: ApiConfig,
    rate_limiter: Optional[RateLimiter] = None,
    tz: Optional[ZoneInfo] = None,
    version: str = "",
) -> type:
    """Create a handler class with the store and config bound."""

    class BoundStatusHandler(StatusHandler):
        pass

    BoundStatusHandler.store = store
    BoundStatusHandler.api_key = config.api_key
    BoundStatusHandler.allowed_origins = tuple(config.allowed_origins)
    BoundStatusHandler.rate_limiter = rate_limiter
    BoundStatusHandler.tz = tz
    BoundStatusHandler.started_at = time.monotonic()
    BoundStatusHandler.version = version
    return BoundStatusHandler


class _StatusHTTPServer(ThreadingHTTPServer):
    # stop() waits for in-flight requests instead of killing them.
    daemon_threads = False
    block_on_close = True


class ApiServer:
    """Threaded HTTP API server for stored site status.

    Example:
        server = ApiServer(config.api, StatusStore(config.storage.results_dir))
        server.start()
        ...
        server.stop()
    """

    def __init__(
        self,
        config: ApiConfig,
        store: StatusStore,
        tz: Optional[ZoneInfo] = None,
        host: str = "",
    ) -> None:
        """Initialize the API server.

        Args:
            config: API configuration.
            store: Status store to read reports and metrics from.
            tz: Timezone for dashboard timestamps.
            host: Interface to bind (all interfaces by default).
        """
        self.config = config
        self.store = store
        self.tz = tz
        self.host = host
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._rate_limiter = RateLimiter(config.rate_limit_requests, config.rate_limit_window_seconds)

    def start(self) -> None:
        """Start the API server in a background thread.

        Raises:
            ApiError: If the server fails to start.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("API server is already running")
            return

        from . import __version__

        try:
            handler_class = _create_handler_class(
                self.store,
                self.config,
                self._rate_limiter,
                self.tz,
                __version__,
            )
            self._server = _StatusHTTPServer((self.host, self.config.port), handler_class)
        except OSError as e:
            # Provide specific guidance based on error type
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise ApiError(
                    f"Port {self.config.port} is already in use. "
                    f"Another process may be using this port, or sitewatch is already serving."
                )
            elif e.errno == 13:  # EACCES - Permission denied
                raise ApiError(
                    f"Permission denied for port {self.config.port}. "
                    f"Ports below 1024 require root privileges. "
                    f"Use a port >= 1024 or run with elevated permissions."
                )
            else:
                raise ApiError(f"Failed to start API server on port {self.config.port}: {e}")

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.5},
            name="api-server",
            daemon=True,
        )
        self._thread.start()
        logger.info("API server started on port %d", self.port)

    @property
    def port(self) -> int:
        """Bound port (differs from config.port when 0 was requested)."""
        if self._server is not None:
            return self._server.server_address[1]
        return self.config.port

    def stop(self) -> None:
        """Stop the API server, waiting for in-flight requests to finish."""
        if self._thread is None or self._server is None:
            return

        logger.info("Stopping API server...")
        self._server.shutdown()
        self._server.server_close()

        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._rate_limiter.cleanup()
        self._server = None
        self._thread = None
        logger.info("API server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()
