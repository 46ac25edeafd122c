[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "loadbalancer"
version = "0.1.0"
description = "A small HTTP load balancer with pluggable balancing strategies, per-client rate limiting and demo backend servers"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "load-balancer",
    "reverse-proxy",
    "round-robin",
    "rate-limiting",
    "http",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
loadbalancer = "loadbalancer.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["loadbalancer"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
