"""The pool of backends behind the balancer, and its periodic health checker."""

from __future__ import annotations

import logging
import threading
from urllib.parse import urlsplit

from loadbalancer.backend import Backend, check_backend_health
from loadbalancer.strategies import Strategy, StrategyType, new_strategy

logger = logging.getLogger(__name__)


class ServerPool:
    """Backends plus the strategy that picks among them."""

    def __init__(self) -> None:
        self._backends: list[Backend] = []
        self._strategy: Strategy | None = None
        self._lock = threading.Lock()

    @property
    def backends(self) -> list[Backend]:
        """A snapshot of the current backends, in the order they were added."""
        with self._lock:
            return list(self._backends)

    @property
    def strategy_type(self) -> StrategyType | None:
        """Type of the active strategy, or None before one is set."""
        with self._lock:
            return self._strategy.strategy_type if self._strategy is not None else None

    def init_strategy(self, strategy_type: StrategyType | str) -> None:
        """Install a fresh strategy of ``strategy_type`` over the current backends."""
        with self._lock:
            self._strategy = new_strategy(strategy_type, self._backends)

    def next_backend(self) -> Backend | None:
        """Ask the strategy for the next backend; None without a strategy or live backend."""
        with self._lock:
            if self._strategy is None:
                return None
            return self._strategy.next_backend()

    def add_backend_using_index(self, endpoint: str, idx: int, weight: int) -> Backend:
        """Add a backend whose URL is ``endpoint`` followed by ``idx``."""
        backend = Backend(f"{endpoint}{idx}", weight=weight)
        with self._lock:
            self._backends.append(backend)
        logger.info("Added backend: %s", backend.url)
        return backend

    def add_backend_dynamic(self, backend_url: str, weight: int) -> Backend:
        """Add a backend at runtime; a malformed URL raises ValueError."""
        urlsplit(backend_url)
        backend = Backend(backend_url, weight=weight)
        with self._lock:
            self._backends.append(backend)
            if self._strategy is not None:
                self._strategy.update_backends(self._backends)
        logger.info("Dynamically added backend: %s", backend_url)
        return backend

    def remove_backend_dynamic(self, backend_url: str) -> Backend:
        """Remove the first backend with ``backend_url``; raise LookupError if absent."""
        with self._lock:
            for backend in self._backends:
                if backend.url == backend_url:
                    self._backends.remove(backend)
                    if self._strategy is not None:
                        self._strategy.update_backends(self._backends)
                    logger.info("Dynamically removed backend: %s", backend_url)
                    return backend
        raise LookupError(f"backend {backend_url} not found")


def check_pool_health(pool: ServerPool) -> None:
    """Probe every backend once and record whether it is alive."""
    for backend in pool.backends:
        backend.alive = check_backend_health(backend.url)


def start_health_checker(pool: ServerPool, interval: float) -> threading.Event:
    """Probe the pool every ``interval`` seconds in a background thread.

    Setting the returned event stops the checker.
    """
    stop = threading.Event()

    def run() -> None:
        while not stop.is_set():
            check_pool_health(pool)
            stop.wait(interval)

    threading.Thread(target=run, name="health-checker", daemon=True).start()
    return stop