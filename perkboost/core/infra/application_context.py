"""
Application Context (Kernel) - Boost Engine Orchestration
=========================================================

Purpose
-------
Composition root that builds every engine service in dependency order, owns
their lifetime, and exposes the engine's external interface to the host game
server.

Responsibilities
----------------
- Build ConfigManager, EventBus, DatabaseService and the domain services
- Start the notification consumer and the lifecycle sweeper
- Coordinate graceful shutdown in reverse order
- Provide structured lifecycle logging with timing

Non-Responsibilities
--------------------
- Business logic (delegated to domain services)
- Player transport (delegated to the injected Notifier)

Initialization Order
--------------------
    1. ConfigManager
    2. DatabaseService (optionally create schema)
    3. EventBus
    4. Analytics → Catalog → Inventory → Activation / Resolver / Lifecycle
    5. Notification consumer
    6. Sweep scheduler (eager sweep on start when configured)

Shutdown Order (Reverse)
------------------------
    1. Sweep scheduler
    2. Notification consumer
    3. EventBus drain
    4. DatabaseService.shutdown()
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from perkboost.core.config.config import Config
from perkboost.core.config.manager import ConfigManager
from perkboost.core.database.base import utc_now
from perkboost.core.database.retry_policy import DatabaseRetryPolicy
from perkboost.core.database.service import DatabaseService
from perkboost.core.event.bus import EventBus
from perkboost.core.logging.logger import get_logger
from perkboost.database.models import ActiveBoost, EffectType, PlayerPerk
from perkboost.modules.analytics.service import PerkAnalyticsService
from perkboost.modules.boosts.activation_service import BoostActivationService
from perkboost.modules.boosts.lifecycle_service import BoostLifecycleService, SweepResult
from perkboost.modules.boosts.resolver import BoostContext, StackingResolver
from perkboost.modules.boosts.sweeper import BoostSweepScheduler
from perkboost.modules.catalog.service import PerkCatalogService
from perkboost.modules.inventory.service import InventoryService
from perkboost.modules.notifications.consumer import BoostNotificationConsumer, Notifier

logger = get_logger(__name__)


class ApplicationContext:
    """
    Kernel for service construction and lifecycle.

    Usage:
        context = ApplicationContext()
        await context.initialize()
        boost = await context.activate_perk("player-1", "game-9", 3)
        await context.shutdown()
    """

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        *,
        notifier: Optional[Notifier] = None,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        # Nothing touches the database or the bus until initialize().
        self._config_manager = config_manager
        self._notifier = notifier
        self._retry_policy = retry_policy
        self._clock = clock

        self._event_bus: Optional[EventBus] = None
        self._analytics: Optional[PerkAnalyticsService] = None
        self._catalog: Optional[PerkCatalogService] = None
        self._inventory: Optional[InventoryService] = None
        self._activation: Optional[BoostActivationService] = None
        self._resolver: Optional[StackingResolver] = None
        self._lifecycle: Optional[BoostLifecycleService] = None
        self._notifications: Optional[BoostNotificationConsumer] = None
        self._sweeper: Optional[BoostSweepScheduler] = None
        self._initialized: bool = False

        logger.debug("ApplicationContext created")

    # ========================================================================
    # INITIALIZATION
    # ========================================================================

    async def initialize(
        self,
        database_url: Optional[str] = None,
        *,
        create_schema: bool = False,
        start_sweeper: bool = True,
    ) -> None:
        """
        Initialize all components in dependency order.

        Args:
            database_url: Overrides ``Config.DATABASE_URL``
            create_schema: Create missing tables (tests, local development)
            start_sweeper: Launch the background lifecycle sweeper

        Raises:
            RuntimeError: If already initialized or initialization fails
        """
        if self._initialized:
            raise RuntimeError("ApplicationContext already initialized")

        logger.info("=" * 70)
        logger.info("APPLICATION CONTEXT INITIALIZATION")
        logger.info("=" * 70)

        start_time = time.perf_counter()

        try:
            step_start = time.perf_counter()
            if self._config_manager is None:
                self._config_manager = ConfigManager.from_directory(Config.CONFIG_DIR)
            logger.info(
                "✓ ConfigManager ready (%.2fms)", (time.perf_counter() - step_start) * 1000
            )

            step_start = time.perf_counter()
            await DatabaseService.initialize(database_url)
            if create_schema:
                await DatabaseService.create_schema()
            logger.info(
                "✓ DatabaseService initialized (%.2fms)",
                (time.perf_counter() - step_start) * 1000,
            )

            step_start = time.perf_counter()
            self._build_services()
            logger.info(
                "✓ Domain services wired (%.2fms)", (time.perf_counter() - step_start) * 1000
            )

            assert self._notifications is not None and self._sweeper is not None
            await self._notifications.start()
            logger.info("✓ Notification consumer subscribed")

            if start_sweeper:
                self._sweeper.start()
                logger.info(
                    "✓ Boost sweeper started (interval %.1fs)", self._sweeper.interval_seconds
                )

            self._initialized = True
            logger.info("=" * 70)
            logger.info("✓ Application context initialized successfully")
            logger.info("  Total time: %.2fms", (time.perf_counter() - start_time) * 1000)
            logger.info("=" * 70)

        except Exception as exc:
            logger.critical(
                "Application context initialization failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )
            await self._emergency_shutdown()
            raise RuntimeError("Failed to initialize application context") from exc

    def _build_services(self) -> None:
        assert self._config_manager is not None
        config = self._config_manager
        retry = self._retry_policy or DatabaseRetryPolicy.from_config()
        clock = self._clock

        self._event_bus = EventBus(config)
        bus = self._event_bus

        self._analytics = PerkAnalyticsService(config, bus, clock=clock)
        self._catalog = PerkCatalogService(config, bus, clock=clock)
        self._inventory = InventoryService(
            config, bus, self._analytics, retry_policy=retry, clock=clock
        )
        self._activation = BoostActivationService(
            config, bus, self._inventory, self._analytics, retry_policy=retry, clock=clock
        )
        self._resolver = StackingResolver(
            config, bus, self._analytics, retry_policy=retry, clock=clock
        )
        self._lifecycle = BoostLifecycleService(
            config, bus, self._analytics, retry_policy=retry, clock=clock
        )
        self._notifications = BoostNotificationConsumer(bus, self._notifier)
        self._sweeper = BoostSweepScheduler(self._lifecycle, config)

    # ========================================================================
    # GRACEFUL SHUTDOWN
    # ========================================================================

    async def shutdown(self) -> None:
        """Stop the sweeper, unsubscribe consumers, drain the bus, close the database."""
        if not self._initialized:
            logger.warning("ApplicationContext not initialized, nothing to shut down")
            return

        logger.info("=" * 70)
        logger.info("APPLICATION CONTEXT SHUTDOWN")
        logger.info("=" * 70)

        if self._sweeper is not None:
            try:
                await self._sweeper.stop()
                logger.info("✓ Boost sweeper stopped")
            except Exception as exc:
                logger.error(
                    "Error stopping boost sweeper",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )

        if self._notifications is not None:
            await self._notifications.stop()
            logger.info("✓ Notification consumer unsubscribed")

        if self._event_bus is not None:
            try:
                await self._event_bus.drain()
                logger.info("✓ EventBus drained")
            except Exception as exc:
                logger.error(
                    "Error draining event bus",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )

        try:
            await DatabaseService.shutdown()
            logger.info("✓ DatabaseService shut down")
        except Exception as exc:
            logger.error(
                "Error shutting down database",
                extra={"error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )

        self._initialized = False
        logger.info("=" * 70)
        logger.info("✓ Application context shutdown complete")
        logger.info("=" * 70)

    async def _emergency_shutdown(self) -> None:
        """Best-effort cleanup when initialization fails partway through."""
        logger.warning("Performing emergency shutdown")

        if self._sweeper is not None:
            try:
                await self._sweeper.stop()
            except Exception as exc:
                logger.debug("Sweeper stop failed during emergency shutdown: %s", exc)

        if self._notifications is not None:
            await self._notifications.stop()

        try:
            await DatabaseService.shutdown()
        except Exception as exc:
            logger.debug("Database shutdown failed during emergency shutdown: %s", exc)

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    def _require(self, component: Optional[Any], name: str) -> Any:
        if component is None:
            raise RuntimeError(f"{name} not available: ApplicationContext not initialized")
        return component

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def config_manager(self) -> ConfigManager:
        return self._require(self._config_manager, "ConfigManager")

    @property
    def event_bus(self) -> EventBus:
        return self._require(self._event_bus, "EventBus")

    @property
    def analytics(self) -> PerkAnalyticsService:
        return self._require(self._analytics, "PerkAnalyticsService")

    @property
    def catalog(self) -> PerkCatalogService:
        return self._require(self._catalog, "PerkCatalogService")

    @property
    def inventory(self) -> InventoryService:
        return self._require(self._inventory, "InventoryService")

    @property
    def activation(self) -> BoostActivationService:
        return self._require(self._activation, "BoostActivationService")

    @property
    def resolver(self) -> StackingResolver:
        return self._require(self._resolver, "StackingResolver")

    @property
    def lifecycle(self) -> BoostLifecycleService:
        return self._require(self._lifecycle, "BoostLifecycleService")

    @property
    def notifications(self) -> BoostNotificationConsumer:
        return self._require(self._notifications, "BoostNotificationConsumer")

    @property
    def sweeper(self) -> BoostSweepScheduler:
        return self._require(self._sweeper, "BoostSweepScheduler")

    # ========================================================================
    # EXTERNAL INTERFACE
    # ========================================================================

    async def activate_perk(self, player_id: str, game_id: str, perk_id: int) -> ActiveBoost:
        return await self.activation.activate_perk(player_id, game_id, perk_id)

    async def deactivate_boost(self, boost_id: int) -> ActiveBoost:
        return await self.activation.deactivate_boost(boost_id)

    async def expire_boost(self, boost_id: int) -> bool:
        return await self.lifecycle.expire_boost(boost_id)

    async def calculate_modified_value(
        self, context: BoostContext, effect_type: Union[EffectType, str]
    ) -> float:
        return await self.resolver.calculate_modified_value(context, effect_type)

    async def get_active_boosts(
        self,
        player_id: str,
        game_id: str,
        effect_type: Optional[Union[EffectType, str]] = None,
    ) -> list[ActiveBoost]:
        return await self.resolver.get_active_boosts(player_id, game_id, effect_type)

    async def get_player_inventory(self, player_id: str) -> list[PlayerPerk]:
        return await self.inventory.get_inventory(player_id)

    async def grant_perks_to_inventory(
        self,
        player_id: str,
        items: Iterable[Mapping[str, Any]],
        *,
        source: Optional[str] = None,
    ) -> list[PlayerPerk]:
        """Entry point for the purchase-completed signal."""
        return await self.inventory.grant_perks(player_id, items, source=source)

    async def equip_perk(self, player_id: str, perk_id: int) -> PlayerPerk:
        return await self.inventory.equip(player_id, perk_id)

    async def unequip_perk(self, player_id: str, perk_id: int) -> PlayerPerk:
        return await self.inventory.unequip(player_id, perk_id)

    async def run_sweep(self) -> SweepResult:
        return await self.lifecycle.run_once()
