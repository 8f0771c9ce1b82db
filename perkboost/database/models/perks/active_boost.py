"""
ActiveBoost: one live instantiation of a perk's effect for a player in a game.

Carries a snapshot of the effect parameters (effect_type, stacking_rule,
magnitude, is_stackable) taken at activation, so catalog edits never change a
boost that is already running. Rows are deactivated, never deleted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Double,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from perkboost.core.database.base import BigIntId, Base, IdMixin, TimestampMixin, utc_now
from perkboost.database.models.enums import StackingRule, enum_values
from perkboost.database.models.perks.perk import Perk


class ActiveBoost(Base, IdMixin, TimestampMixin):
    __tablename__ = "active_boosts"
    __table_args__ = (
        Index("ix_active_boosts_player_game_active", "player_id", "game_id", "is_active"),
        Index("ix_active_boosts_expiry", "is_active", "expires_at"),
    )

    player_id: Mapped[str] = mapped_column(String(64), nullable=False)

    game_id: Mapped[str] = mapped_column(String(64), nullable=False)

    perk_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("perks.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    activated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    remaining_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    is_stackable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    deactivated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Effect snapshot
    effect_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    stacking_rule: Mapped[StackingRule] = mapped_column(
        Enum(
            StackingRule,
            name="boost_stacking_rule",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
    )

    # Double precision, so the snapshot equals the catalog float exactly.
    magnitude: Mapped[float] = mapped_column(Double, nullable=False)

    perk: Mapped[Perk] = relationship(lazy="raise")

    def __repr__(self) -> str:
        return (
            f"<ActiveBoost(id={self.id}, player_id={self.player_id!r}, "
            f"game_id={self.game_id!r}, perk_id={self.perk_id}, "
            f"is_active={self.is_active}, remaining_uses={self.remaining_uses})>"
        )
