"""Test fixtures for volguard tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager

import pytest
import pytest_asyncio
import respx
import structlog
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from safir.dependencies.http_client import http_client_dependency
from safir.testing.kubernetes import MockKubernetesApi, patch_kubernetes
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook

from volguard.config import Config
from volguard.factory import Factory, ProcessContext
from volguard.main import create_app

from .support.config import configure
from .support.constants import PROMETHEUS_URL, TEST_BASE_URL, TEST_NAMESPACE
from .support.kubernetes import create_namespace
from .support.lvm import MockVolumeBackend, patch_volume_backend
from .support.prometheus import MockPrometheus, register_mock_prometheus


@pytest_asyncio.fixture
async def config() -> Config:
    """Construct default configuration for tests."""
    return await configure("standard")


@pytest_asyncio.fixture
async def app(
    config: Config,
    mock_backend: MockVolumeBackend,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url=TEST_BASE_URL
    ) as client:
        yield client


@pytest_asyncio.fixture
async def factory(
    config: Config,
    mock_backend: MockVolumeBackend,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[Factory]:
    """Create a component factory for tests.

    Background tasks are not started.
    """
    context = await ProcessContext.from_config(config)
    try:
        yield Factory(context, structlog.get_logger("volguard"))
    finally:
        await context.aclose()
        await http_client_dependency.aclose()


@pytest.fixture
def mock_backend() -> Iterator[MockVolumeBackend]:
    yield from patch_volume_backend()


@pytest_asyncio.fixture
async def mock_kubernetes() -> AsyncIterator[MockKubernetesApi]:
    with contextmanager(patch_kubernetes)() as mock:
        await create_namespace(mock, TEST_NAMESPACE)
        yield mock


@pytest.fixture
def mock_prometheus(respx_mock: respx.Router) -> MockPrometheus:
    return register_mock_prometheus(respx_mock, PROMETHEUS_URL)


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    webhook = SecretStr("https://slack.example.com/webhook")
    config.slack_webhook = webhook
    yield mock_slack_webhook(webhook.get_secret_value(), respx_mock)
    config.slack_webhook = None
