"""Shared test configuration and fixtures.

Every test gets its own SQLite database file under ``tmp_path`` and a fresh
set of services driven by a controllable clock.
"""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from entitlements.config import Settings
from entitlements.database import create_schema
from entitlements.main import create_app
from entitlements.services.container import ServiceContainer, build_container


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


# ---------------------------------------------------------------------------
# Settings, clock and services
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'entitlements.db'}",
        sqlite_busy_timeout_seconds=30.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 15, 12, 0, 0))


@pytest_asyncio.fixture
async def services(settings: Settings, clock: FakeClock) -> AsyncGenerator[ServiceContainer, None]:
    """Services over a freshly created schema."""
    container = build_container(settings, clock=clock)
    await create_schema(container.engine)
    yield container
    await container.dispose()


@pytest.fixture
def subscription_service(services: ServiceContainer):
    return services.subscriptions


@pytest.fixture
def usage_limits_service(services: ServiceContainer):
    return services.usage_limits


@pytest.fixture
def usage_tracking_service(services: ServiceContainer):
    return services.usage_tracking


@pytest.fixture
def limit_checker(services: ServiceContainer):
    return services.limit_checker


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(settings: Settings, services: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test services."""
    app = create_app(settings)
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def plan_payload() -> Callable[..., dict[str, Any]]:
    """Build a usage-limits payload; keyword arguments override fields."""

    def _build(plan_name: str = "basic", **overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "plan_name": plan_name,
            "teachers": 5,
            "classrooms": 10,
            "students_per_classroom": 30,
            "question_banks": 50,
            "questions": 1000,
            "assignment_exports_per_day": 10,
            "ai": {
                "independent_agent": 100,
                "lumen_agent": 50,
                "rag_agent": 25,
                "rag_document_uploads": 10,
            },
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def subscription_payload() -> Callable[..., dict[str, Any]]:
    """Build a subscription payload covering January 2024 by default."""

    def _build(user_id: str = "user-1", plan_name: str = "basic", **overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "user_id": user_id,
            "plan_name": plan_name,
            "current_period_start": datetime(2024, 1, 1),
            "current_period_end": datetime(2024, 2, 1),
        }
        payload.update(overrides)
        return payload

    return _build
