# loadbalancer

A small HTTP load balancer. It starts a set of demo backend servers on
consecutive local ports, checks their health in the background, and forwards
requests that arrive on `/loadbalancer` to one of them. The backend is chosen by
one of four strategies, and each client can be held to a rate limit.

It uses only the Python standard library.

## Installation

```
pip install .
```

## Running

```
loadbalancer --algo rr -n 3
```

This starts three backends on ports 8080, 8081 and 8082 and the balancer on
port 8090, and probes each backend's `/health` every 20 seconds. Each request is
then answered by one of the backends:

```
curl http://localhost:8090/loadbalancer
```

The command exits with status 1 and logs the reason when an option is invalid
(an unknown strategy, a weight that is not an integer, fewer weights than
servers, more than 10 servers) or a port cannot be bound.

### Options

Each option can be written with one dash or two (`-algo` or `--algo`).

| Option      | Default | Meaning                                                          |
|-------------|---------|------------------------------------------------------------------|
| `--algo`    | `rr`    | Strategy: `rr` (round robin), `wrr` (weighted round robin), `lc` (least connections), `ip` (IP hash) |
| `-n`        | `3`     | Number of backend servers to start (at most 10)                  |
| `--weights` | none    | Weights for the servers, separated by commas; used by `wrr`. Without it every server has weight 1 |
| `--limiter` | `none`  | Rate limiter: `none`, `token`, `fixed`, `leaky`                  |
| `--rate`    | `0`     | Requests allowed per second                                      |
| `--burst`   | `0`     | Burst size for the `token` and `leaky` limiters                  |

Example: weighted round robin with one server taking three requests for every
one that the others take, limited to 5 requests a second per client with a
burst of 10:

```
loadbalancer --algo wrr -n 3 --weights 3,1,1 --limiter token --rate 5 --burst 10
```

## Endpoints

* `/loadbalancer` (any method): forwarded to the backend the strategy chooses,
  with the request's method, headers and body. Returns `429` when the client is
  over its rate limit, and `503` when no backend is healthy or the backend
  cannot be reached.
* `POST /admin/addBackend?url=http://localhost:8085&weight=2`: adds a backend to
  the pool and starts a demo server on its port. The URL must name a port; a
  missing or non-positive weight becomes 1.
* `POST /admin/removeBackend?url=http://localhost:8085`: asks the backend to shut
  down through its `/shutdown` endpoint and removes it from the pool.

The admin endpoints answer `405` to any method but `POST`; other paths answer
`404`.

Each demo backend answers any path after a two-second pause with
`Response from Server <n>`, reports `/health` (`200` while alive, `503`
otherwise), and on `/shutdown` marks itself unhealthy and stops a second later.

### Rate limiting

Clients are told apart by the `X-Real-IP` header, else the first entry of
`X-Forwarded-For`, else the connection's address and port. Each client gets its
own limiter the first time it is seen:

* `token`: a bucket of `burst` tokens refilled at `rate` tokens a second.
* `fixed`: at most `rate` requests in each one-second window.
* `leaky`: a bucket holding up to `burst` requests that drains at `rate` a second.

## Using it as a library

```python
from loadbalancer.cli import build_pool
from loadbalancer.strategies import StrategyType

pool = build_pool(StrategyType.ROUND_ROBIN, 3, [1, 1, 1], 8080)
backend = pool.next_backend()
```

* `loadbalancer.backend`: `Backend` (URL, weight, thread-safe `alive` flag and
  connection count), `check_backend_health`, and `start_server` / `run_servers`
  for the demo servers.
* `loadbalancer.strategies`: `RoundRobin`, `WeightedRoundRobin`,
  `LeastConnections` and `IPHash`, built by name with `new_strategy`, plus the
  helpers `get_client_ip` and `hash_ip`.
* `loadbalancer.ratelimiter`: `TokenBucket`, `FixedWindow` and `LeakyBucket`,
  built by name with `new_limiter`. Each takes an optional `clock` function.
* `loadbalancer.server_pool`: `ServerPool`, `check_pool_health` and
  `start_health_checker`, which returns an event that stops the checker when set.
* `loadbalancer.proxy`: `create_proxy_server` builds the HTTP front end without
  starting it; `start_proxy` runs it. `add_backend` and `remove_backend` carry
  out the admin actions and raise `AdminError` with an HTTP status on failure.

## Limitations

* The IP hash strategy does not look at the requesting client: it hashes a fixed
  address (`192.168.1.100` unless `IPHash` is given another `client_ip`), so
  every request goes to the same backend.
* The ports of the backends (from 8080) and of the balancer (8090) and the
  health check interval are fixed in the command and cannot be set by options.
* Only plain HTTP is served; there is no TLS.

## Tests

```
pip install .[test]
pytest
```