"""Perk catalog: effect parsing and admin reads/writes."""

from perkboost.modules.catalog.effects import PerkEffect
from perkboost.modules.catalog.service import PerkCatalogService

__all__ = ["PerkCatalogService", "PerkEffect"]
