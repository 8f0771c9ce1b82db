"""Bridges boost events to the player notification transport."""

from perkboost.modules.notifications.consumer import (
    BoostNotificationConsumer,
    LoggingNotifier,
    Notifier,
)

__all__ = ["BoostNotificationConsumer", "LoggingNotifier", "Notifier"]
