"""Backend servers: shared state, health probing and a small demo HTTP server."""

from __future__ import annotations

import logging
import threading
import time
import urllib.error
import urllib.request
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

MAX_SERVERS = 10
SHUTDOWN_GRACE_SECONDS = 1.0


class Backend:
    """A single upstream server with thread-safe liveness and connection counters."""

    def __init__(self, url: str, weight: int = 1, alive: bool = True) -> None:
        self.url = url
        self.weight = weight
        self.current_weight = 0
        self._alive = alive
        self._active_connections = 0
        self._alive_lock = threading.Lock()
        self._conn_lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"Backend(url={self.url!r}, weight={self.weight}, alive={self.alive}, "
            f"active_connections={self.active_connections})"
        )

    @property
    def alive(self) -> bool:
        with self._alive_lock:
            return self._alive

    @alive.setter
    def alive(self, value: bool) -> None:
        with self._alive_lock:
            self._alive = value

    @property
    def active_connections(self) -> int:
        with self._conn_lock:
            return self._active_connections

    def increment_connections(self) -> None:
        """Record one more in-flight request."""
        with self._conn_lock:
            self._active_connections += 1

    def decrement_connections(self) -> None:
        """Record a finished request; the count never drops below zero."""
        with self._conn_lock:
            if self._active_connections > 0:
                self._active_connections -= 1


def check_backend_health(url: str, timeout: float = 5.0) -> bool:
    """Return True when ``<url>/health`` answers with HTTP 200."""
    try:
        with urllib.request.urlopen(url + "/health", timeout=timeout) as response:
            if response.status == 200:
                return True
    except (urllib.error.URLError, OSError, ValueError):
        pass
    logger.info("Health check failed for %s", url)
    return False


def _close_server(server: ThreadingHTTPServer) -> None:
    server.shutdown()
    server.server_close()


def _make_handler(server_id: int, backend: Backend, delay: float) -> type[BaseHTTPRequestHandler]:
    class Handler(BaseHTTPRequestHandler):
        def _respond(self, status: int, text: str) -> None:
            body = text.encode()
            self.send_response(status)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _dispatch(self) -> None:
            path = urlsplit(self.path).path
            if path == "/health":
                if backend.alive:
                    self._respond(200, f"Server {server_id} is healthy")
                else:
                    self._respond(503, f"Server {server_id} is unhealthy")
            elif path == "/shutdown":
                logger.info("Server %d is shutting down...", server_id)
                self._respond(200, f"Server {server_id} shutting down")
                backend.alive = False
                timer = threading.Timer(SHUTDOWN_GRACE_SECONDS, _close_server, args=(self.server,))
                timer.daemon = True
                timer.start()
            else:
                logger.info("Server %d handling request %s", server_id, path)
                if delay > 0:
                    time.sleep(delay)
                self._respond(200, f"Response from Server {server_id}")

        do_GET = _dispatch
        do_POST = _dispatch
        do_PUT = _dispatch
        do_DELETE = _dispatch
        do_PATCH = _dispatch

        def log_message(self, format: str, *args: object) -> None:
            logger.debug("server %d: " + format, server_id, *args)

    return Handler


def start_server(
    port: int, server_id: int, backend: Backend, delay: float = 2.0
) -> ThreadingHTTPServer:
    """Start a demo server for ``backend`` on ``port`` in a background thread.

    ``delay`` is the simulated processing time of ordinary requests.
    The running server is returned so the caller can stop it.
    """
    server = ThreadingHTTPServer(("", port), _make_handler(server_id, backend, delay))
    server.daemon_threads = True
    thread = threading.Thread(
        target=server.serve_forever, name=f"backend-server-{server_id}", daemon=True
    )
    thread.start()
    logger.info("Starting server %d on :%d", server_id, server.server_address[1])
    return server


def run_servers(
    base_port: int, backends: list[Backend], delay: float = 2.0
) -> list[ThreadingHTTPServer]:
    """Start one demo server per backend on consecutive ports from ``base_port``."""
    if len(backends) > MAX_SERVERS:
        raise ValueError(f"Amount of servers cannot exceed {MAX_SERVERS}")
    servers = [
        start_server(base_port + index, index, backend, delay)
        for index, backend in enumerate(backends)
    ]
    logger.info("All %d servers started successfully", len(servers))
    return servers