"""Perk boost engine: activation, stacking and lifecycle of player boosts."""

__version__ = "1.0.0"
