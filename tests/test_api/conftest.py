"""HTTP client wired to the app with the test session and collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from engagement_escrow.api.deps import (
    get_app_settings,
    get_db_session,
    get_notifier,
    get_optional_redis,
    get_processor,
)
from engagement_escrow.main import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from fastapi import FastAPI


@pytest.fixture
def app(session, settings, processor, notifier) -> FastAPI:
    application = create_app()

    async def _session():
        yield session

    application.dependency_overrides[get_db_session] = _session
    application.dependency_overrides[get_app_settings] = lambda: settings
    application.dependency_overrides[get_processor] = lambda: processor
    application.dependency_overrides[get_notifier] = lambda: notifier
    application.dependency_overrides[get_optional_redis] = lambda: None
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
