# models/weekly_report.py
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from models.column_types import JSONType


class WeeklyReport(Base):
    __tablename__ = "weekly_reports"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    week: Mapped[str] = mapped_column(String(16))           # ISO week label, e.g. 2024-W07
    period: Mapped[str] = mapped_column(String(32))         # "<start>_to_<end>"
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)

    weekly_return: Mapped[float | None] = mapped_column(Float, nullable=True)
    high_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    low_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    volatility: Mapped[float | None] = mapped_column(Float, nullable=True)
    average_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_invested: Mapped[float] = mapped_column(Float, default=0.0)
    total_value: Mapped[float] = mapped_column(Float, default=0.0)
    purchase_count: Mapped[int] = mapped_column(default=0)

    highlights: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    learning_points: Mapped[str | None] = mapped_column(Text, nullable=True)

    ai_advice_id: Mapped[int | None] = mapped_column(
        ForeignKey("ai_insights.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    ai_advice = relationship("AIInsight", foreign_keys=[ai_advice_id])
