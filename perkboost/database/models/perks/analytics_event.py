"""
PerkAnalyticsEvent: append-only advisory record for the analytics sink.
Never read by the engine.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Enum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from perkboost.core.database.base import BigIntId, Base, IdMixin, utc_now
from perkboost.database.models.enums import PerkEventType, enum_values


class PerkAnalyticsEvent(Base, IdMixin):
    __tablename__ = "perk_analytics_events"

    # No foreign key: analytics rows must survive catalog cleanup.
    perk_id: Mapped[int] = mapped_column(
        BigIntId, nullable=False, index=True
    )

    player_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    game_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    event_type: Mapped[PerkEventType] = mapped_column(
        Enum(
            PerkEventType,
            name="perk_event_type",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        index=True,
    )

    revenue: Mapped[float] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=False, default=0
    )

    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
