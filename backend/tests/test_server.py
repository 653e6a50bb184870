"""
Storefront Backend — Startup Tests
====================================

What:  Port resolution and the startup entry point.
How:   Real sockets for the occupied-port case; `is_port_available` and
       `uvicorn.run` are patched everywhere else so nothing actually listens.

What we test:
    ✅ An occupied port is skipped
    ✅ The smallest free port in the window wins
    ✅ A fully busy window raises PortUnavailableError
    ✅ main() exits with status 1 on malformed settings, missing secrets or no port
    ✅ main() hands the app to uvicorn on the resolved port
"""

import json
import socket
from unittest.mock import patch

import pytest

import storefront.main
from storefront import server
from storefront.exceptions import PortUnavailableError


def read_entries(text):
    return [json.loads(line) for line in text.splitlines() if line.strip()]


@pytest.fixture
def scanned_ports(monkeypatch):
    """Patch the bind check; ports listed in `busy` are reported taken."""
    state = {"busy": set(), "tried": []}

    def fake_bind_check(port, host=server.WILDCARD_HOST):
        state["tried"].append(port)
        return port not in state["busy"]

    monkeypatch.setattr(server, "is_port_available", fake_bind_check)
    return state


class TestPortBindCheck:
    def test_listening_port_is_unavailable(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
            holder.bind(("127.0.0.1", 0))
            holder.listen(1)
            taken = holder.getsockname()[1]

            assert server.is_port_available(taken, "127.0.0.1") is False

            chosen = server.find_available_port(taken, host="127.0.0.1")

        assert taken < chosen < taken + server.PORT_SCAN_ATTEMPTS


class TestFindAvailablePort:
    def test_preferred_port_used_when_free(self, scanned_ports):
        assert server.find_available_port(3000) == 3000
        assert scanned_ports["tried"] == [3000]

    def test_smallest_free_port_wins(self, scanned_ports):
        scanned_ports["busy"].update({3000, 3001, 3003})

        assert server.find_available_port(3000) == 3002

    def test_window_exhausted(self, scanned_ports):
        scanned_ports["busy"].update(range(3000, 3020))

        with pytest.raises(PortUnavailableError) as exc_info:
            server.find_available_port(3000)

        assert str(exc_info.value) == "No available port found starting from 3000"
        assert scanned_ports["tried"] == list(range(3000, 3020))

    def test_window_capped_at_highest_port(self, scanned_ports):
        scanned_ports["busy"].update(range(65530, 65536))

        with pytest.raises(PortUnavailableError):
            server.find_available_port(65530)

        assert max(scanned_ports["tried"]) == 65535


class TestMain:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("ENVIRONMENT", "PORT", "HOST", "JWT_SECRET", "DATABASE_URL",
                     "OAUTH_SERVER_URL", "APP_ID"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("ENVIRONMENT", "test")

    @pytest.fixture
    def uvicorn_run(self):
        with patch("storefront.server.uvicorn.run") as run:
            yield run

    def test_runs_uvicorn_on_resolved_port(self, monkeypatch, scanned_ports, uvicorn_run):
        monkeypatch.setenv("PORT", "4100")
        monkeypatch.setenv("HOST", "127.0.0.1")
        scanned_ports["busy"].add(4100)

        server.main()

        uvicorn_run.assert_called_once()
        (app,), kwargs = uvicorn_run.call_args
        assert kwargs["port"] == 4101
        assert kwargs["host"] == "127.0.0.1"
        assert app.state.settings.environment == "test"

    def test_missing_production_secrets_exit_1(self, monkeypatch, scanned_ports, uvicorn_run):
        monkeypatch.setenv("ENVIRONMENT", "production")

        with pytest.raises(SystemExit) as exc_info:
            server.main()

        assert exc_info.value.code == 1
        uvicorn_run.assert_not_called()
        assert scanned_ports["tried"] == []

    def test_malformed_port_exit_1(self, monkeypatch, capsys, scanned_ports, uvicorn_run):
        monkeypatch.setenv("PORT", "abc")

        with pytest.raises(SystemExit) as exc_info:
            server.main()

        assert exc_info.value.code == 1
        uvicorn_run.assert_not_called()
        assert scanned_ports["tried"] == []
        [entry] = read_entries(capsys.readouterr().err)
        assert entry["message"] == "[SERVER] Failed to start server"
        assert entry["error"]["name"] == "ValidationError"
        assert "port" in entry["error"]["message"]

    def test_unknown_environment_exit_1(self, monkeypatch, capsys, scanned_ports, uvicorn_run):
        monkeypatch.setenv("ENVIRONMENT", "staging")

        with pytest.raises(SystemExit) as exc_info:
            server.main()

        assert exc_info.value.code == 1
        uvicorn_run.assert_not_called()
        [entry] = read_entries(capsys.readouterr().err)
        assert entry["message"] == "[SERVER] Failed to start server"

    def test_entry_point_import_builds_no_app(self):
        assert not hasattr(storefront.main, "app")

    def test_no_port_exit_1(self, monkeypatch, scanned_ports, uvicorn_run):
        monkeypatch.setenv("PORT", "5000")
        scanned_ports["busy"].update(range(5000, 5020))

        with pytest.raises(SystemExit) as exc_info:
            server.main()

        assert exc_info.value.code == 1
        uvicorn_run.assert_not_called()

    def test_valid_production_config_starts(self, monkeypatch, scanned_ports, uvicorn_run):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("JWT_SECRET", "s" * 32)
        monkeypatch.setenv("DATABASE_URL", "mysql://shop:pw@db/shop")
        monkeypatch.setenv("OAUTH_SERVER_URL", "https://oauth.example.com")
        monkeypatch.setenv("APP_ID", "storefront")

        server.main()

        uvicorn_run.assert_called_once()
