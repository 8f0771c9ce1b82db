"""ORM schema for the perk boost engine."""
