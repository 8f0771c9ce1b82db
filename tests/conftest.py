"""
Pytest Configuration and Fixtures for the Perk Boost Engine
===========================================================

Purpose
-------
Centralized fixtures for the test suite: configuration, event bus, a
controllable clock, a real database per test, the domain services and a
catalog factory.

Architecture Notes
------------------
- Unit tests build what they need from `config_manager` / `event_bus`
- Integration tests get a fresh SQLite file under ``tmp_path`` through
  `sqlite+aiosqlite`; DatabaseService is initialized before and shut down
  after every test
- Every service shares one `FrozenClock`, so expiry is driven by
  ``clock.advance(...)`` rather than by sleeping
- Retries back off for zero milliseconds
"""

from __future__ import annotations

import itertools
import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from perkboost.core.config.config import Config
from perkboost.core.config.manager import ConfigManager
from perkboost.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from perkboost.core.database.service import DatabaseService
from perkboost.core.event.bus import EventBus
from perkboost.database.models import DurationClass, Perk
from perkboost.modules.analytics.service import PerkAnalyticsService
from perkboost.modules.boosts.activation_service import BoostActivationService
from perkboost.modules.boosts.events import BOOST_ACTIVATED, BOOST_EXPIRED
from perkboost.modules.boosts.lifecycle_service import BoostLifecycleService
from perkboost.modules.boosts.resolver import StackingResolver
from perkboost.modules.catalog.service import PerkCatalogService
from perkboost.modules.inventory.service import InventoryService

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Configure pytest environment."""
    os.environ["ENVIRONMENT"] = "testing"
    os.environ.setdefault("LOG_LEVEL", "DEBUG")
    Config.load()


# ============================================================================
# TEST DOUBLES
# ============================================================================


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


class EventRecorder:
    """Subscribes to the given events and keeps every payload in arrival order."""

    def __init__(self, bus: EventBus, *event_names: str) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        for event_name in event_names:
            bus.subscribe(
                event_name,
                self._handler_for(event_name),
                identifier=f"tests.recorder@{event_name}",
            )

    def _handler_for(self, event_name: str):
        async def handler(payload):
            self.events.append((event_name, dict(payload)))

        return handler

    def named(self, event_name: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.events if name == event_name]


# ============================================================================
# CORE FIXTURES
# ============================================================================


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def config_manager() -> ConfigManager:
    """Built-in defaults only; tests override with ``config_manager.set``."""
    return ConfigManager()


@pytest.fixture
def event_bus(config_manager: ConfigManager) -> EventBus:
    return EventBus(config_manager)


@pytest.fixture
def event_recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus, BOOST_ACTIVATED, BOOST_EXPIRED)


@pytest.fixture
def retry_policy() -> DatabaseRetryPolicy:
    return DatabaseRetryPolicy(
        DatabaseRetryConfig(
            max_attempts=3,
            initial_backoff_ms=0,
            max_backoff_ms=0,
            jitter_ms=0,
        )
    )


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'perkboost.db'}"


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncGenerator[None, None]:
    """
    Fresh schema in a fresh SQLite file.

    Scope: function (clean slate per test)
    """
    await DatabaseService.initialize(database_url)
    await DatabaseService.create_schema()
    yield
    await DatabaseService.shutdown()


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def analytics(database, config_manager, event_bus, clock) -> PerkAnalyticsService:
    return PerkAnalyticsService(config_manager, event_bus, clock=clock)


@pytest.fixture
def catalog(database, config_manager, event_bus, clock) -> PerkCatalogService:
    return PerkCatalogService(config_manager, event_bus, clock=clock)


@pytest.fixture
def inventory(
    database, config_manager, event_bus, analytics, retry_policy, clock
) -> InventoryService:
    return InventoryService(
        config_manager, event_bus, analytics, retry_policy=retry_policy, clock=clock
    )


@pytest.fixture
def activation(
    database, config_manager, event_bus, inventory, analytics, retry_policy, clock
) -> BoostActivationService:
    return BoostActivationService(
        config_manager,
        event_bus,
        inventory,
        analytics,
        retry_policy=retry_policy,
        clock=clock,
    )


@pytest.fixture
def resolver(
    database, config_manager, event_bus, analytics, retry_policy, clock
) -> StackingResolver:
    return StackingResolver(
        config_manager, event_bus, analytics, retry_policy=retry_policy, clock=clock
    )


@pytest.fixture
def lifecycle(
    database, config_manager, event_bus, analytics, retry_policy, clock
) -> BoostLifecycleService:
    return BoostLifecycleService(
        config_manager, event_bus, analytics, retry_policy=retry_policy, clock=clock
    )


# ============================================================================
# FACTORIES
# ============================================================================

PerkFactory = Callable[..., Awaitable[Perk]]


@pytest.fixture
def perk_factory(catalog: PerkCatalogService) -> PerkFactory:
    """
    Create catalog perks with sensible defaults.

    Usage:
        perk = await perk_factory(magnitude=2, stacking_rule="additive")
        timed = await perk_factory(
            duration_class=DurationClass.TEMPORARY, duration_minutes=10
        )
    """
    counter = itertools.count(1)

    async def create(
        *,
        name: Optional[str] = None,
        duration_class: DurationClass = DurationClass.PERMANENT,
        effect_type: str = "speed",
        stacking_rule: str = "additive",
        magnitude: float = 1.0,
        duration_minutes: Optional[int] = None,
        uses: Optional[int] = None,
        price: float = 0,
        is_active: bool = True,
    ) -> Perk:
        metadata: Dict[str, Any] = {
            "effect_type": effect_type,
            "stacking_rule": stacking_rule,
            "magnitude": magnitude,
        }
        if duration_minutes is not None:
            metadata["duration_minutes"] = duration_minutes
        if uses is not None:
            metadata["uses"] = uses
        return await catalog.create_perk(
            name or f"Test Perk {next(counter)}",
            duration_class,
            metadata,
            price=price,
            is_active=is_active,
        )

    return create


@pytest.fixture
def grant(inventory: InventoryService):
    """Shortcut: ``await grant("p1", perk, 2)``."""

    async def _grant(player_id: str, perk: Perk, quantity: int = 1):
        rows = await inventory.grant_perks(player_id, [{"perk_id": perk.id, "quantity": quantity}])
        return rows[0]

    return _grant
