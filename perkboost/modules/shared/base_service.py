"""
Shared plumbing for the domain services (inventory, activation, resolution,
lifecycle, catalog, analytics).

A service gets the config manager, the event bus, a logger and a clock
injected. It owns its transactions through `DatabaseService` and publishes
events only after they commit; it never swallows exceptions.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from perkboost.core.database.base import utc_now
from perkboost.core.exceptions import ConfigurationError
from perkboost.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from perkboost.core.config.manager import ConfigManager
    from perkboost.core.event.bus import EventBus

MAX_IDENTIFIER_LENGTH = 64


class BaseService:
    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self._clock = clock
        self.log = logger

    def now(self) -> datetime:
        """Current aware UTC time from the injected clock."""
        return self._clock()

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """
        Dot-notation config lookup.

        Raises:
            ConfigurationError: ``required`` is set and the key has no value.
        """
        value = self._config.get(key, default)
        if value is None and required:
            raise ConfigurationError(key, f"Required configuration key '{key}' is missing")
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload = dict(data)
        if context:
            payload.update(context)
        await self._events.publish(event_type, payload)

    def log_operation(self, operation: str, **fields: Any) -> None:
        self.log.info(operation, extra={"operation": operation, **fields})

    # ------------------------------------------------------------------
    # Argument checks
    # ------------------------------------------------------------------

    @staticmethod
    def validate_positive_int(value: Any, name: str) -> int:
        # bool is an int subclass; True must not pass as 1.
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError(name, f"{name} must be a positive integer, got {value!r}")
        return value

    @staticmethod
    def validate_identifier(value: Any, name: str) -> str:
        """
        Player and game ids are opaque strings of 1 to 64 characters after
        trimming; integers are accepted and stringified.
        """
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValidationError(name, f"{name} must be a string, got {value!r}")
        text = str(value).strip()
        if not 0 < len(text) <= MAX_IDENTIFIER_LENGTH:
            raise ValidationError(
                name, f"{name} must be 1-{MAX_IDENTIFIER_LENGTH} characters"
            )
        return text
