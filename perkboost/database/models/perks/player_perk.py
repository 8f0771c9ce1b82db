"""
PlayerPerk: per-player ownership ledger row for one perk.
Pure schema; rows are never hard-deleted.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from perkboost.core.database.base import BigIntId, Base, IdMixin, TimestampMixin, utc_now
from perkboost.database.models.perks.perk import Perk


class PlayerPerk(Base, IdMixin, TimestampMixin):
    """
    Ownership of one perk by one player.

    ``quantity`` may reach zero and the row stays; the check constraint is the
    last line against a negative balance.
    """

    __tablename__ = "player_perks"
    __table_args__ = (
        UniqueConstraint("player_id", "perk_id", name="uq_player_perk"),
        CheckConstraint("quantity >= 0", name="quantity_non_negative"),
    )

    player_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    perk_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("perks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_equipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    perk: Mapped[Perk] = relationship(lazy="raise")

    def __repr__(self) -> str:
        return (
            f"<PlayerPerk(player_id={self.player_id!r}, perk_id={self.perk_id}, "
            f"quantity={self.quantity}, is_equipped={self.is_equipped})>"
        )
