"""
Perk: catalog definition of an effect a player can own.
Pure schema; effect parsing lives in `perkboost.modules.catalog.effects`.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Enum, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from perkboost.core.database.base import Base, IdMixin, TimestampMixin
from perkboost.database.models.enums import DurationClass, enum_values


class Perk(Base, IdMixin, TimestampMixin):
    """
    Catalog perk.

    ``perk_metadata`` (column ``metadata``) holds the effect bag: effect_type,
    stacking_rule, magnitude, duration_minutes, uses, is_stackable.
    """

    __tablename__ = "perks"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    duration_class: Mapped[DurationClass] = mapped_column(
        Enum(
            DurationClass,
            name="perk_duration_class",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
    )

    price: Mapped[float] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=False, default=0
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, index=True
    )

    perk_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    def __repr__(self) -> str:
        return (
            f"<Perk(id={self.id}, name={self.name!r}, "
            f"duration_class={self.duration_class}, is_active={self.is_active})>"
        )
