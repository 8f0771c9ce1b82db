"""
Shared building blocks for the engine's domain modules.
"""

from perkboost.modules.shared.base_repository import BaseRepository
from perkboost.modules.shared.base_service import BaseService
from perkboost.modules.shared.exceptions import (
    BoostDomainException,
    FeatureDisabledError,
    InactivePerkError,
    InvalidPerkConfigurationError,
    NotFoundError,
    OwnershipError,
    ValidationError,
)
from perkboost.modules.shared.feature_toggles import FeatureToggles

__all__ = [
    "BaseRepository",
    "BaseService",
    "BoostDomainException",
    "FeatureDisabledError",
    "FeatureToggles",
    "InactivePerkError",
    "InvalidPerkConfigurationError",
    "NotFoundError",
    "OwnershipError",
    "ValidationError",
]
