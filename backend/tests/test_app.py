"""
Storefront Backend — Application Tests
========================================

What:  The assembled app: health route, request IDs, access logging, CORS
       and the lifespan-managed sweep task.

What we test:
    ✅ /health reports status, version and environment
    ✅ X-Request-ID is echoed when sent and generated when absent
    ✅ Access and error log entries carry the request ID; /health is not logged
    ✅ CORS exposes the rate-limit and request-ID headers
    ✅ Rejected CORS preflights use the JSON error envelope
    ✅ Lifespan runs the sweeper and shuts it down cleanly
"""

import asyncio
import json
import re

import pytest
from fastapi import FastAPI

from storefront import __version__
from storefront.main import create_app


def stdout_entries(text):
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_report(self, test_app, client_factory):
        async with client_factory(test_app) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["version"] == __version__
        assert body["environment"] == "test"
        assert body["uptime_seconds"] >= 0
        # The health request itself has been counted
        assert body["rate_limited_clients"] == 1


class TestRequestId:
    @pytest.mark.asyncio
    async def test_incoming_id_is_echoed(self, test_app, client_factory):
        async with client_factory(test_app) as client:
            response = await client.get("/sample/ok", headers={"X-Request-ID": "order-77"})

        assert response.headers["X-Request-ID"] == "order-77"

    @pytest.mark.asyncio
    async def test_id_generated_when_absent(self, test_app, client_factory):
        async with client_factory(test_app) as client:
            first = await client.get("/sample/ok")
            second = await client.get("/sample/ok")

        assert re.fullmatch(r"[0-9a-f]{8}", first.headers["X-Request-ID"])
        assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_error_responses_carry_id(self, prod_app, client_factory):
        async with client_factory(prod_app) as client:
            response = await client.get("/sample/crash", headers={"X-Request-ID": "crash-1"})

        assert response.status_code == 500
        assert response.headers["X-Request-ID"] == "crash-1"

    @pytest.mark.asyncio
    async def test_error_log_entry_carries_id(
        self, capsys, settings_factory, client_factory, sample_router
    ):
        app = create_app(settings_factory(environment="production"), routers=[sample_router])

        async with client_factory(app) as client:
            await client.get("/sample/crash", headers={"X-Request-ID": "crash-7"})

        failure = next(
            entry for entry in stdout_entries(capsys.readouterr().err)
            if entry["message"] == "[SERVER:errors] Request failed"
        )
        assert failure["context"]["requestId"] == "crash-7"
        assert failure["context"]["path"] == "/sample/crash"


class TestAccessLog:
    @pytest.mark.asyncio
    async def test_request_logged_with_id_and_client(self, capsys, settings_factory, client_factory):
        app = create_app(settings_factory(environment="production"))

        async with client_factory(app, client=("198.51.100.7", 4000)) as client:
            await client.get("/health")
            await client.get("/gallery", headers={"X-Request-ID": "gal-1"})

        captured = capsys.readouterr()
        logged_paths = [
            entry["context"].get("path")
            for entry in stdout_entries(captured.out) + stdout_entries(captured.err)
            if entry["message"].startswith("[SERVER] GET ")
        ]
        assert logged_paths == ["/gallery"]

        access = next(
            entry for entry in stdout_entries(captured.err)
            if entry["message"] == "[SERVER] GET /gallery - 404"
        )
        assert access["level"] == "WARN"
        assert access["context"]["requestId"] == "gal-1"
        assert access["context"]["clientIp"] == "198.51.100.7"
        assert access["context"]["statusCode"] == 404
        assert access["context"]["duration"] >= 0


class TestCors:
    @pytest.mark.asyncio
    async def test_allowed_origin_sees_exposed_headers(self, settings_factory, client_factory):
        app = create_app(settings_factory(cors_origins="https://shop.example.com"))

        async with client_factory(app) as client:
            response = await client.get("/health", headers={"Origin": "https://shop.example.com"})

        assert response.headers["Access-Control-Allow-Origin"] == "https://shop.example.com"
        exposed = response.headers["Access-Control-Expose-Headers"]
        assert "X-RateLimit-Remaining" in exposed
        assert "X-Request-ID" in exposed

    @pytest.mark.asyncio
    async def test_disallowed_preflight_gets_json_envelope(self, settings_factory, client_factory):
        app = create_app(settings_factory(cors_origins="https://shop.example.com"))

        async with client_factory(app) as client:
            response = await client.options(
                "/health",
                headers={
                    "Origin": "https://evil.example.com",
                    "Access-Control-Request-Method": "GET",
                },
            )

        assert response.status_code == 400
        assert response.headers["Content-Type"] == "application/json"
        assert response.json() == {"error": {"message": "Not allowed by CORS"}}
        assert "Access-Control-Allow-Origin" not in response.headers
        assert response.headers["X-Frame-Options"] == "DENY"

    @pytest.mark.asyncio
    async def test_allowed_preflight_passes(self, settings_factory, client_factory):
        app = create_app(settings_factory(cors_origins="https://shop.example.com"))

        async with client_factory(app) as client:
            response = await client.options(
                "/health",
                headers={
                    "Origin": "https://shop.example.com",
                    "Access-Control-Request-Method": "GET",
                },
            )

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "https://shop.example.com"


class TestLifespan:
    @pytest.mark.asyncio
    async def test_sweeper_runs_until_shutdown(self, capsys, settings_factory):
        app = create_app(
            settings_factory(
                environment="production",
                rate_limit_window_ms=1,
                rate_limit_sweep_interval=0.01,
            )
        )
        limiter = app.state.rate_limiter

        async with app.router.lifespan_context(app):
            limiter.hit("203.0.113.9")
            for _ in range(100):
                if len(limiter) == 0:
                    break
                await asyncio.sleep(0.01)
            assert len(limiter) == 0

        messages = [entry["message"] for entry in stdout_entries(capsys.readouterr().out)]
        assert "[SERVER] Shutting down gracefully" in messages
        assert messages[-1] == "[SERVER] Server closed"


def test_asgi_module_exposes_configured_app():
    from storefront.asgi import app

    assert isinstance(app, FastAPI)
    assert app.state.settings.environment == "test"
