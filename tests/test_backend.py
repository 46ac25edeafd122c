import urllib.error
import urllib.request

import pytest

from loadbalancer.backend import (
    Backend,
    check_backend_health,
    run_servers,
    start_server,
)


@pytest.fixture
def served():
    backend = Backend("http://localhost:0")
    server = start_server(0, 3, backend, delay=0)
    port = server.server_address[1]
    base = f"http://127.0.0.1:{port}"
    yield backend, base
    server.shutdown()
    server.server_close()


def _get(url):
    with urllib.request.urlopen(url, timeout=5) as response:
        return response.status, response.read().decode()


def test_connection_counter_round_trip():
    backend = Backend("http://localhost:8080")
    backend.increment_connections()
    backend.increment_connections()
    assert backend.active_connections == 2
    backend.decrement_connections()
    assert backend.active_connections == 1


def test_decrement_never_goes_negative():
    backend = Backend("http://localhost:8080")
    backend.decrement_connections()
    assert backend.active_connections == 0


def test_alive_toggle_and_defaults():
    backend = Backend("http://localhost:8080", weight=4)
    assert backend.alive is True
    assert backend.weight == 4
    assert backend.current_weight == 0
    backend.alive = False
    assert backend.alive is False


def test_root_route_responds(served):
    _, base = served
    status, body = _get(base + "/anything")
    assert status == 200
    assert body == "Response from Server 3"


def test_health_reflects_backend_state(served):
    backend, base = served
    assert check_backend_health(base) is True
    backend.alive = False
    with pytest.raises(urllib.error.HTTPError) as info:
        _get(base + "/health")
    assert info.value.code == 503
    assert check_backend_health(base) is False


def test_health_check_unreachable_host():
    assert check_backend_health("http://127.0.0.1:1", timeout=1) is False


def test_run_servers_rejects_more_than_ten():
    backends = [Backend(f"http://localhost:{9000 + i}") for i in range(11)]
    with pytest.raises(ValueError):
        run_servers(9000, backends)