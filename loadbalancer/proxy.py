"""The balancing HTTP front end: rate limiting, forwarding and admin endpoints."""

from __future__ import annotations

import http.client
import logging
import threading
import urllib.error
import urllib.request
from collections.abc import Mapping
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlsplit, urlunsplit

from loadbalancer.backend import start_server
from loadbalancer.ratelimiter import Limiter, new_limiter
from loadbalancer.server_pool import ServerPool
from loadbalancer.strategies import StrategyType

logger = logging.getLogger(__name__)

UPSTREAM_TIMEOUT = 30.0

_HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    """Hand redirects back to the caller as responses instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        raise urllib.error.HTTPError(req.full_url, code, msg, headers, fp)


_OPENER = urllib.request.build_opener(urllib.request.ProxyHandler({}), _NoRedirect())


def _header(headers: Any, name: str) -> str:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


class AdminError(Exception):
    """An admin request failed; ``status`` is the HTTP status to answer with."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


class ClientLimiters:
    """One rate limiter per client address, created on first sight."""

    def __init__(self, limiter_type: str, rate: int, burst: int) -> None:
        if limiter_type != "none":
            new_limiter(limiter_type, rate, burst)
        self.limiter_type = limiter_type
        self.rate = rate
        self.burst = burst
        self._limiters: dict[str, Limiter] = {}
        self._lock = threading.Lock()

    def allow(self, headers: Mapping[str, str], remote_addr: str) -> bool:
        """Return True if the client behind these headers may make a request now."""
        if self.limiter_type == "none":
            return True
        client = _header(headers, "X-Real-IP")
        if not client:
            forwarded = _header(headers, "X-Forwarded-For")
            client = forwarded.split(",")[0] if forwarded else remote_addr
        with self._lock:
            limiter = self._limiters.get(client)
            if limiter is None:
                limiter = new_limiter(self.limiter_type, self.rate, self.burst)
                self._limiters[client] = limiter
                logger.info("Created new limiter for client %s", client)
        if not limiter.allow():
            logger.info("Rate limit exceeded for client %s", client)
            return False
        return True


def add_backend(pool: ServerPool, query: Mapping[str, str], delay: float = 2.0) -> str:
    """Add the backend named by ``query["url"]`` and start a demo server for it."""
    raw_url = query.get("url", "")
    if not raw_url:
        raise AdminError(400, "URL parameter is required")
    weight = 1
    try:
        parsed_weight = int(query.get("weight", ""))
    except ValueError:
        parsed_weight = 0
    if parsed_weight > 0:
        weight = parsed_weight

    try:
        parts = urlsplit(raw_url)
    except ValueError:
        raise AdminError(400, "Invalid URL") from None
    try:
        port = parts.port
    except ValueError:
        raise AdminError(400, "Invalid port number") from None
    if port is None:
        raise AdminError(400, "Port must be specified")

    try:
        backend = pool.add_backend_dynamic(raw_url, weight)
    except ValueError as error:
        raise AdminError(500, f"Failed to add backend: {error}") from None

    try:
        start_server(port, port % 10, backend, delay)
    except OSError as error:
        logger.error("Server %d error: %s", port % 10, error)
    return f"Backend {raw_url} added with weight {weight}"


def remove_backend(pool: ServerPool, query: Mapping[str, str]) -> str:
    """Ask the backend at ``query["url"]`` to shut down, then drop it from the pool."""
    url = query.get("url", "")
    if not url:
        raise AdminError(400, "URL parameter is required")
    request = urllib.request.Request(
        f"{url}/shutdown", data=b"", method="POST", headers={"Content-Type": "application/json"}
    )
    try:
        with _OPENER.open(request, timeout=UPSTREAM_TIMEOUT) as response:
            status = response.status
    except (OSError, ValueError, http.client.HTTPException) as error:
        raise AdminError(502, f"Failed to call shutdown on backend: {error}") from None
    if status != 200:
        raise AdminError(502, f"Failed to call shutdown on backend: status {status}")
    try:
        pool.remove_backend_dynamic(url)
    except LookupError as error:
        raise AdminError(400, f"Failed to remove backend: {error.args[0]}") from None
    return f"Backend removed: {url}"


def _relay_headers(headers: Any) -> list[tuple[str, str]]:
    return [
        (key, value)
        for key, value in headers.items()
        if key.lower() not in _HOP_BY_HOP and key.lower() != "content-length"
    ]


def _forward(
    method: str, url: str, headers: Any, body: bytes | None, client: str
) -> tuple[int, list[tuple[str, str]], bytes]:
    request = urllib.request.Request(url, data=body, method=method)
    for key, value in headers.items():
        if key.lower() in _HOP_BY_HOP or key.lower() in ("host", "content-length"):
            continue
        request.add_header(key, value)
    prior = _header(headers, "X-Forwarded-For")
    request.add_header("X-Forwarded-For", f"{prior}, {client}" if prior else client)
    try:
        with _OPENER.open(request, timeout=UPSTREAM_TIMEOUT) as response:
            return response.status, _relay_headers(response.headers), response.read()
    except urllib.error.HTTPError as error:
        with error:
            return error.code, _relay_headers(error.headers), error.read()


def _make_handler(pool: ServerPool, limiters: ClientLimiters) -> type[BaseHTTPRequestHandler]:
    class ProxyHandler(BaseHTTPRequestHandler):
        def _send(self, status: int, body: bytes, headers: list[tuple[str, str]]) -> None:
            self.send_response(status)
            for key, value in headers:
                self.send_header(key, value)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(body)

        def _text(self, status: int, text: str) -> None:
            self._send(status, text.encode(), [("Content-Type", "text/plain; charset=utf-8")])

        def _error(self, status: int, message: str) -> None:
            self._text(status, message + "\n")

        def _body(self) -> bytes | None:
            length = int(self.headers.get("Content-Length") or 0)
            return self.rfile.read(length) if length > 0 else None

        def _balance(self, path: str, query: str) -> None:
            remote = f"{self.client_address[0]}:{self.client_address[1]}"
            if not limiters.allow(self.headers, remote):
                self._error(429, "Rate limit exceeded")
                return
            backend = pool.next_backend()
            if backend is None:
                logger.warning("No healthy backends available")
                self._error(503, "Service Unavailable")
                return
            target = urlsplit(backend.url)
            upstream = urlunsplit((target.scheme, target.netloc, target.path + path, query, ""))
            logger.info("Forwarding request to: %s", backend.url)
            body = self._body()
            try:
                status, headers, payload = _forward(
                    self.command, upstream, self.headers, body, self.client_address[0]
                )
            except (OSError, ValueError, http.client.HTTPException) as error:
                logger.warning("Proxy error: %s", error)
                status, headers, payload = 503, [], b"Service unavailable"
            finally:
                if pool.strategy_type is StrategyType.LEAST_CONNECTIONS:
                    backend.decrement_connections()
            self._send(status, payload, headers)

        def _admin(self, action: Any, query: str) -> None:
            if self.command != "POST":
                self._error(405, "Only POST method allowed")
                return
            self._body()
            params = {key: values[0] for key, values in parse_qs(query, keep_blank_values=True).items()}
            try:
                message = action(pool, params)
            except AdminError as error:
                self._error(error.status, error.message)
                return
            self._text(200, message)

        def _dispatch(self) -> None:
            parts = urlsplit(self.path)
            if parts.path == "/loadbalancer":
                self._balance(parts.path, parts.query)
            elif parts.path == "/admin/addBackend":
                self._admin(add_backend, parts.query)
            elif parts.path == "/admin/removeBackend":
                self._admin(remove_backend, parts.query)
            else:
                self._error(404, "404 page not found")

        do_GET = _dispatch
        do_POST = _dispatch
        do_PUT = _dispatch
        do_DELETE = _dispatch
        do_PATCH = _dispatch
        do_HEAD = _dispatch

        def log_message(self, format: str, *args: object) -> None:
            logger.debug("proxy: " + format, *args)

    return ProxyHandler


def _parse_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    return host.strip("[]"), int(port)


def create_proxy_server(
    address: str, pool: ServerPool, limiter_type: str, rate: int, burst: int
) -> ThreadingHTTPServer:
    """Bind the balancer to ``address`` ("host:port", host may be empty) without serving yet."""
    limiters = ClientLimiters(limiter_type, rate, burst)
    server = ThreadingHTTPServer(_parse_address(address), _make_handler(pool, limiters))
    server.daemon_threads = True
    return server


def start_proxy(
    address: str, pool: ServerPool, limiter_type: str, rate: int, burst: int
) -> None:
    """Run the balancer on ``address`` until interrupted."""
    server = create_proxy_server(address, pool, limiter_type, rate, burst)
    logger.info("Starting Load Balancer on %s", address)
    with server:
        server.serve_forever()