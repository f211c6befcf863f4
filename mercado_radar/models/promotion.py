"""Promotion model.

A promotion is unique per (market, start_date, end_date); that triple is the
natural key the persister matches on across pipeline runs.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from mercado_radar.database import Base


class Promotion(Base):
    __tablename__ = "promotions"
    __table_args__ = (
        UniqueConstraint(
            "market_id", "start_date", "end_date", name="uq_promotions_market_window"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    market_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("markets.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str | None] = mapped_column(String(300))
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    market = relationship("Market", back_populates="promotions")
    posts = relationship(
        "Post",
        back_populates="promotion",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
