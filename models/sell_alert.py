# models/sell_alert.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class SellAlert(Base):
    """A fired take-profit alert waiting for the user to act on it."""

    __tablename__ = "sell_alerts"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    position_id: Mapped[int] = mapped_column(ForeignKey("positions.id", ondelete="CASCADE"), index=True)

    symbol: Mapped[str] = mapped_column(String(32))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    current_price: Mapped[float] = mapped_column(Float, default=0.0)
    return_rate: Mapped[float] = mapped_column(Float, default=0.0)
    target_return_rate: Mapped[float] = mapped_column(Float, default=0.0)
    sell_ratio: Mapped[float] = mapped_column(Float, default=100.0)
    shares_to_sell: Mapped[float] = mapped_column(Float, default=0.0)
    notify_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)  # pending | dismissed | completed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    position = relationship("Position", back_populates="sell_alerts")
