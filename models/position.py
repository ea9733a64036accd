# models/position.py
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from models.column_types import JSONType


class Position(Base):
    __tablename__ = "positions"
    __table_args__ = (
        UniqueConstraint("user_id", "symbol", name="uq_positions_user_symbol"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    symbol: Mapped[str] = mapped_column(String(32))
    name: Mapped[str] = mapped_column(String(200), default="")
    market: Mapped[str] = mapped_column(String(8), default="US")          # US | KR | GLOBAL
    exchange: Mapped[str] = mapped_column(String(32), default="")
    asset_type: Mapped[str] = mapped_column(String(16), default="stock")  # stock | etf | reit | fund
    sector: Mapped[str | None] = mapped_column(String(32), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")       # USD | KRW

    # holdings, always recomputed from the transaction list
    shares: Mapped[float] = mapped_column(Float, default=0.0)
    average_price: Mapped[float] = mapped_column(Float, default=0.0)
    total_invested: Mapped[float] = mapped_column(Float, default=0.0)
    current_price: Mapped[float] = mapped_column(Float, default=0.0)
    total_value: Mapped[float] = mapped_column(Float, default=0.0)
    return_rate: Mapped[float] = mapped_column(Float, default=0.0)        # percent
    profit_loss: Mapped[float] = mapped_column(Float, default=0.0)        # unrealized
    realized_gain: Mapped[float] = mapped_column(Float, default=0.0)
    dividend_income: Mapped[float] = mapped_column(Float, default=0.0)

    purchase_method: Mapped[str] = mapped_column(String(8), default="manual")  # manual | auto
    first_purchase_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    transaction_count: Mapped[int] = mapped_column(Integer, default=0)

    # enabled, target_return_rate, sell_ratio, notify_email, trigger_once, last_triggered_at
    sell_alert: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    owner = relationship("User", back_populates="positions")
    transactions = relationship(
        "Transaction",
        back_populates="position",
        cascade="all, delete-orphan",
        order_by="Transaction.date",
    )
    schedules = relationship(
        "AutoInvestSchedule",
        back_populates="position",
        cascade="all, delete-orphan",
        order_by="AutoInvestSchedule.effective_from",
    )
    sell_alerts = relationship("SellAlert", back_populates="position", cascade="all, delete-orphan")
