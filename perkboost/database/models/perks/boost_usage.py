"""
BoostUsage: append-only record of one boost contributing to a resolved value.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from perkboost.core.database.base import BigIntId, Base, IdMixin, utc_now


class BoostUsage(Base, IdMixin):
    __tablename__ = "boost_usage_tracking"

    active_boost_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("active_boosts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    game_id: Mapped[str] = mapped_column(String(64), nullable=False)

    player_id: Mapped[str] = mapped_column(String(64), nullable=False)

    event_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
