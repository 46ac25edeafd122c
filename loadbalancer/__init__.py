"""HTTP load balancer with pluggable strategies, rate limiting and demo backends."""

__version__ = "0.1.0"

__all__ = ["backend", "ratelimiter", "strategies", "server_pool", "proxy", "cli"]