"""Domain modules of the perk boost engine."""
