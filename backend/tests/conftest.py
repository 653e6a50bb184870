"""
Storefront Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Every HTTP-level test needs an app built with known settings and a
       client that talks to it in-process.
How:   `make_settings()` builds `Settings` without reading `.env`;
       `build_sample_router()` exposes routes that succeed, fail operationally, crash,
       and echo their input so middleware effects are observable.

Fixture Hierarchy:
    settings factories:  dev_settings, prod_settings, test_settings
    apps:                dev_app, prod_app, test_app (sample router mounted)
    client helper:       make_client(app, client=("127.0.0.1", 123))
    routers:             sample_router (for apps built inside a test)
"""

import os

# Anything that builds Settings from the process environment (storefront.asgi) runs in test mode
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi import APIRouter, Request
from httpx import ASGITransport, AsyncClient

from storefront.config import Settings
from storefront.exceptions import NotFoundError
from storefront.main import create_app
from storefront.middleware.error_handler import async_handler


def make_settings(**overrides) -> Settings:
    values = {"environment": "test", "rate_limit_requests": 100, "rate_limit_window_ms": 60_000}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_client(app, client=("127.0.0.1", 123)) -> AsyncClient:
    """
    HTTPX AsyncClient routed straight into the ASGI app.

    Usage:
        async with make_client(app) as client:
            response = await client.get("/health")
    """
    transport = ASGITransport(app=app, client=client)
    return AsyncClient(transport=transport, base_url="http://test")


def build_sample_router() -> APIRouter:
    router = APIRouter(prefix="/sample")

    @router.get("/ok")
    async def ok():
        return {"ok": True}

    @router.get("/query")
    async def query(request: Request):
        return dict(request.query_params)

    @router.post("/echo")
    async def echo(request: Request):
        return await request.json()

    @router.post("/form")
    async def form(request: Request):
        data = await request.form()
        return dict(data)

    @router.post("/raw")
    async def raw(request: Request):
        body = await request.body()
        return {"length": len(body), "text": body.decode("utf-8", "replace")}

    @router.get("/app-error")
    async def app_error():
        raise NotFoundError("Not found")

    @router.get("/crash")
    async def crash():
        workshop = None
        return workshop.title  # AttributeError on None

    @router.get("/silent-crash")
    async def silent_crash():
        raise RuntimeError()

    @router.get("/wrapped-crash")
    @async_handler
    async def wrapped_crash(request: Request):
        raise ValueError("checkout backend unreachable")

    @router.get("/items/{item_id}")
    async def item(item_id: int):
        return {"item_id": item_id}

    return router


@pytest.fixture
def dev_settings() -> Settings:
    return make_settings(environment="development")


@pytest.fixture
def prod_settings() -> Settings:
    return make_settings(environment="production")


@pytest.fixture
def test_settings() -> Settings:
    return make_settings(environment="test")


@pytest.fixture
def dev_app(dev_settings):
    return create_app(dev_settings, routers=[build_sample_router()])


@pytest.fixture
def prod_app(prod_settings):
    return create_app(prod_settings, routers=[build_sample_router()])


@pytest.fixture
def test_app(test_settings):
    return create_app(test_settings, routers=[build_sample_router()])


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def client_factory():
    return make_client


@pytest.fixture
def sample_router() -> APIRouter:
    """For tests that build their app inside the test body (e.g. under capsys)."""
    return build_sample_router()
