"""Boost activation, stacking resolution and lifecycle."""

from perkboost.modules.boosts.activation_service import BoostActivationService
from perkboost.modules.boosts.lifecycle_service import BoostLifecycleService, SweepResult
from perkboost.modules.boosts.resolver import BoostContext, BoostResolution, StackingResolver
from perkboost.modules.boosts.sweeper import BoostSweepScheduler

__all__ = [
    "BoostActivationService",
    "BoostContext",
    "BoostLifecycleService",
    "BoostResolution",
    "BoostSweepScheduler",
    "StackingResolver",
    "SweepResult",
]
