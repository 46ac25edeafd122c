"""Command line entry point: start demo backends, a health checker and the balancer."""

from __future__ import annotations

import argparse
import logging
import re
from collections.abc import Sequence

from loadbalancer.backend import run_servers
from loadbalancer.proxy import start_proxy
from loadbalancer.server_pool import ServerPool, start_health_checker
from loadbalancer.strategies import StrategyType

logger = logging.getLogger(__name__)

BASE_PORT = 8080
PROXY_ADDRESS = ":8090"
HEALTH_CHECK_INTERVAL = 20.0
BACKEND_ENDPOINT = "http://localhost:"

_STRATEGY_NAMES = {
    "rr": StrategyType.ROUND_ROBIN,
    "wrr": StrategyType.WEIGHTED_ROUND_ROBIN,
    "lc": StrategyType.LEAST_CONNECTIONS,
    "ip": StrategyType.IP_HASH,
}

_INTEGER = re.compile(r"[+-]?[0-9]+")


def parse_strategy(name: str) -> StrategyType:
    """Map a short strategy name (rr, wrr, lc, ip) to its type."""
    try:
        return _STRATEGY_NAMES[name]
    except KeyError:
        raise ValueError(f"Unknown strategy: {name}. Use one of: rr, wrr, lc, ip") from None


def parse_weights(text: str, count: int) -> list[int]:
    """Parse comma-separated weights; an empty text gives weight 1 for each of ``count``."""
    if not text:
        return [1] * max(count, 0)
    weights = []
    for item in text.split(","):
        if not _INTEGER.fullmatch(item):
            raise ValueError(f"Invalid weight: {item}")
        weights.append(int(item))
    return weights


def build_pool(
    strategy_type: StrategyType, count: int, weights: Sequence[int], base_port: int = BASE_PORT
) -> ServerPool:
    """Create a pool of ``count`` local backends on consecutive ports with a strategy."""
    if len(weights) < count:
        raise ValueError(f"{count} servers need {count} weights, got {len(weights)}")
    pool = ServerPool()
    for offset, weight in zip(range(count), weights):
        pool.add_backend_using_index(BACKEND_ENDPOINT, base_port + offset, weight)
    pool.init_strategy(strategy_type)
    return pool


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="loadbalancer", description="HTTP load balancer demo")
    parser.add_argument("-algo", "--algo", default="rr",
                        help="Load balancing strategy: rr, wrr, lc, ip")
    parser.add_argument("-n", "--n", type=int, default=3,
                        help="Number of backend servers to spin up")
    parser.add_argument("-weights", "--weights", default="",
                        help="Comma-separated weights for each server (used with wrr)")
    parser.add_argument("-limiter", "--limiter", default="none",
                        choices=["none", "token", "fixed", "leaky"],
                        help="Rate limiter algorithm")
    parser.add_argument("-rate", "--rate", type=int, default=0,
                        help="Allowed number of requests per second")
    parser.add_argument("-burst", "--burst", type=int, default=0,
                        help="Burst size (only for token and leaky bucket)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    try:
        strategy_type = parse_strategy(args.algo)
        weights = parse_weights(args.weights, args.n)
        pool = build_pool(strategy_type, args.n, weights, BASE_PORT)
        logger.info("Starting backend servers...")
        run_servers(BASE_PORT, pool.backends)
        start_health_checker(pool, HEALTH_CHECK_INTERVAL)
        start_proxy(PROXY_ADDRESS, pool, args.limiter, args.rate, args.burst)
    except (ValueError, OSError) as error:
        logger.error("%s", error)
        return 1
    except KeyboardInterrupt:
        return 0
    return 0