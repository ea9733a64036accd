# models/ai_insight.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from models.column_types import JSONType


class AIInsight(Base):
    __tablename__ = "ai_insights"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    weekly_summary: Mapped[str] = mapped_column(Text, default="")
    news_highlights: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    signals: Mapped[dict | None] = mapped_column(JSONType, nullable=True)          # {sell_signal, reason}
    recommendations: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    raw_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    period: Mapped[str] = mapped_column(String(32))       # "<start>_to_<end>"
    model: Mapped[str] = mapped_column(String(100), default="")
    source_report_id: Mapped[int | None] = mapped_column(nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
