"""Backend selection strategies."""

from __future__ import annotations

import logging
import threading
import zlib
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from enum import Enum

from loadbalancer.backend import Backend

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_IP = "192.168.1.100"

_MASK64 = (1 << 64) - 1


class StrategyType(str, Enum):
    ROUND_ROBIN = "round_robin"
    WEIGHTED_ROUND_ROBIN = "weighted_round_robin"
    LEAST_CONNECTIONS = "least_connections"
    IP_HASH = "ip_hash"


class Strategy(ABC):
    """Chooses the backend that receives the next request."""

    strategy_type: StrategyType

    def __init__(self, backends: Iterable[Backend]) -> None:
        self.backends = list(backends)
        self._lock = threading.Lock()

    def update_backends(self, backends: Iterable[Backend]) -> None:
        """Replace the set of backends this strategy chooses from."""
        with self._lock:
            self.backends = list(backends)

    @abstractmethod
    def next_backend(self) -> Backend | None:
        """Return the chosen backend, or None if none is available."""


class RoundRobin(Strategy):
    """Cycle through live backends in order."""

    strategy_type = StrategyType.ROUND_ROBIN

    def __init__(self, backends: Iterable[Backend]) -> None:
        super().__init__(backends)
        self._current = 0

    def next_backend(self) -> Backend | None:
        with self._lock:
            count = len(self.backends)
            for offset in range(count):
                index = (self._current + offset) % count
                backend = self.backends[index]
                if backend.alive:
                    self._current = (index + 1) % count
                    return backend
            return None


class WeightedRoundRobin(Strategy):
    """Smooth weighted round robin over live backends."""

    strategy_type = StrategyType.WEIGHTED_ROUND_ROBIN

    def next_backend(self) -> Backend | None:
        with self._lock:
            total = 0
            best: Backend | None = None
            for backend in self.backends:
                if not backend.alive:
                    continue
                backend.current_weight += backend.weight
                total += backend.weight
                if best is None or backend.current_weight > best.current_weight:
                    best = backend
            if best is None:
                return None
            best.current_weight -= total
            return best


class LeastConnections(Strategy):
    """Pick the live backend with the fewest active connections and count the new one."""

    strategy_type = StrategyType.LEAST_CONNECTIONS

    def next_backend(self) -> Backend | None:
        with self._lock:
            live = [backend for backend in self.backends if backend.alive]
            if not live:
                return None
            best = min(live, key=lambda backend: backend.active_connections)
            best.increment_connections()
            logger.debug(
                "Best server %s has %d active connections", best.url, best.active_connections
            )
            return best


class IPHash(Strategy):
    """Map a client IP to a fixed backend by CRC-32 of the address."""

    strategy_type = StrategyType.IP_HASH

    def __init__(self, backends: Iterable[Backend], client_ip: str = DEFAULT_CLIENT_IP) -> None:
        super().__init__(backends)
        self.client_ip = client_ip

    def next_backend(self) -> Backend | None:
        with self._lock:
            if not self.backends:
                return None
            index = zlib.crc32(self.client_ip.encode()) % len(self.backends)
            selected = self.backends[index]
            logger.debug(
                "IP hashing selected backend %s for client IP %s", selected.url, self.client_ip
            )
            return selected


_STRATEGIES: dict[StrategyType, type[Strategy]] = {
    StrategyType.ROUND_ROBIN: RoundRobin,
    StrategyType.WEIGHTED_ROUND_ROBIN: WeightedRoundRobin,
    StrategyType.LEAST_CONNECTIONS: LeastConnections,
    StrategyType.IP_HASH: IPHash,
}


def new_strategy(strategy_type: StrategyType | str, backends: Iterable[Backend]) -> Strategy:
    """Build the strategy named by ``strategy_type``; unknown names raise ValueError."""
    try:
        kind = StrategyType(strategy_type)
    except ValueError:
        raise ValueError(
            f"invalid algorithm {strategy_type!r}; use: rr, wrr, ip, lc"
        ) from None
    return _STRATEGIES[kind](backends)


def _header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def _split_host(address: str) -> str:
    if address.startswith("["):
        end = address.find("]")
        if end < 0 or not address[end + 1 :].startswith(":"):
            raise ValueError(f"invalid address {address!r}")
        return address[1:end]
    host, sep, _ = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    if ":" in host:
        raise ValueError(f"too many colons in address {address!r}")
    return host


def get_client_ip(headers: Mapping[str, str], remote_addr: str) -> str:
    """Client IP from X-Forwarded-For, else the host part of ``remote_addr``; "" if unparsable."""
    forwarded = _header(headers, "X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    try:
        return _split_host(remote_addr)
    except ValueError as error:
        logger.warning("Error parsing remote address: %s", error)
        return ""


def hash_ip(client_ip: str) -> int:
    """Polynomial hash (base 31) of the address bytes, wrapping as a signed 64-bit integer."""
    value = 0
    for byte in client_ip.encode():
        value = (31 * value + byte) & _MASK64
    return value - (1 << 64) if value >= 1 << 63 else value