"""
Core infrastructure layer.

Configuration, logging, the database subsystem, the in-process event bus and
the composition root live here. Nothing in this package knows about perks or
boosts except the composition root, which wires the domain services together.
"""
