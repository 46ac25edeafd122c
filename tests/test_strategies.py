from collections import Counter

import pytest

from loadbalancer.backend import Backend
from loadbalancer.strategies import (
    IPHash,
    LeastConnections,
    RoundRobin,
    Strategy,
    StrategyType,
    WeightedRoundRobin,
    get_client_ip,
    hash_ip,
    new_strategy,
)


def make_backends(count, weights=None):
    weights = weights or [1] * count
    return [Backend(f"http://localhost:{8080 + i}", weight=w) for i, w in enumerate(weights)]


def test_strategy_type_values():
    assert StrategyType("round_robin") is StrategyType.ROUND_ROBIN
    assert StrategyType.WEIGHTED_ROUND_ROBIN.value == "weighted_round_robin"
    assert StrategyType.LEAST_CONNECTIONS.value == "least_connections"
    assert StrategyType.IP_HASH.value == "ip_hash"


def test_round_robin_cycles_in_order():
    backends = make_backends(3)
    strategy = RoundRobin(backends)
    picks = [strategy.next_backend() for _ in range(6)]
    assert picks == backends + backends


def test_round_robin_skips_dead():
    backends = make_backends(3)
    backends[1].alive = False
    strategy = RoundRobin(backends)
    picks = [strategy.next_backend() for _ in range(4)]
    assert picks == [backends[0], backends[2], backends[0], backends[2]]


def test_round_robin_none_when_all_dead_or_empty():
    backends = make_backends(2)
    for backend in backends:
        backend.alive = False
    assert RoundRobin(backends).next_backend() is None
    assert RoundRobin([]).next_backend() is None


def test_round_robin_after_shrinking_backends():
    backends = make_backends(3)
    strategy = RoundRobin(backends)
    strategy.next_backend()
    strategy.next_backend()
    strategy.update_backends(backends[:1])
    assert strategy.next_backend() is backends[0]


def test_weighted_round_robin_respects_weights():
    backends = make_backends(3, [5, 1, 1])
    strategy = WeightedRoundRobin(backends)
    counts = Counter(strategy.next_backend().url for _ in range(7 * 4))
    assert counts[backends[0].url] == 20
    assert counts[backends[1].url] == 4
    assert counts[backends[2].url] == 4


def test_weighted_round_robin_is_smooth():
    backends = make_backends(2, [1, 1])
    strategy = WeightedRoundRobin(backends)
    picks = [strategy.next_backend() for _ in range(4)]
    assert picks == [backends[0], backends[1], backends[0], backends[1]]


def test_weighted_round_robin_skips_dead_and_handles_none():
    backends = make_backends(2, [3, 1])
    backends[0].alive = False
    strategy = WeightedRoundRobin(backends)
    assert {strategy.next_backend() for _ in range(3)} == {backends[1]}
    backends[1].alive = False
    assert strategy.next_backend() is None


def test_least_connections_spreads_load():
    backends = make_backends(3)
    strategy = LeastConnections(backends)
    picks = [strategy.next_backend() for _ in range(3)]
    assert picks == backends
    assert [b.active_connections for b in backends] == [1, 1, 1]


def test_least_connections_prefers_idle_live_backend():
    backends = make_backends(3)
    backends[0].increment_connections()
    backends[2].alive = False
    strategy = LeastConnections(backends)
    assert strategy.next_backend() is backends[1]
    assert backends[1].active_connections == 1


def test_least_connections_none_when_all_dead():
    backends = make_backends(2)
    for backend in backends:
        backend.alive = False
    assert LeastConnections(backends).next_backend() is None


def test_ip_hash_is_sticky():
    backends = make_backends(4)
    strategy = IPHash(backends)
    first = strategy.next_backend()
    assert first in backends
    assert all(strategy.next_backend() is first for _ in range(5))


def test_ip_hash_empty():
    assert IPHash([]).next_backend() is None


@pytest.mark.parametrize(
    "name, cls",
    [
        ("round_robin", RoundRobin),
        (StrategyType.WEIGHTED_ROUND_ROBIN, WeightedRoundRobin),
        ("least_connections", LeastConnections),
        ("ip_hash", IPHash),
    ],
)
def test_new_strategy(name, cls):
    backends = make_backends(2)
    strategy = new_strategy(name, backends)
    assert isinstance(strategy, cls)
    assert isinstance(strategy, Strategy)
    assert strategy.strategy_type is StrategyType(name)
    assert strategy.backends == backends


def test_new_strategy_rejects_unknown():
    with pytest.raises(ValueError):
        new_strategy("random", [])


def test_get_client_ip_prefers_forwarded_header():
    headers = {"x-forwarded-for": " 10.1.2.3 , 10.9.9.9"}
    assert get_client_ip(headers, "127.0.0.1:5000") == "10.1.2.3"


@pytest.mark.parametrize(
    "remote, expected",
    [
        ("10.0.0.1:5000", "10.0.0.1"),
        ("[::1]:80", "::1"),
        ("nonsense", ""),
        ("::1:80", ""),
    ],
)
def test_get_client_ip_from_remote_addr(remote, expected):
    assert get_client_ip({}, remote) == expected


def test_hash_ip_small_values():
    assert hash_ip("") == 0
    assert hash_ip("a") == ord("a")
    assert hash_ip("ab") == 3105


def test_hash_ip_wraps_to_signed_64_bit():
    value = hash_ip("192.168.1.100")
    assert -(1 << 63) <= value < (1 << 63)
    assert hash_ip("192.168.1.100") == value