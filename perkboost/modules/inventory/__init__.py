"""Per-player perk ownership ledger."""

from perkboost.modules.inventory.service import InventoryService

__all__ = ["InventoryService"]
