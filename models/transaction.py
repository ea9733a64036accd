# models/transaction.py
from __future__ import annotations

import datetime as dt

from sqlalchemy import Date, DateTime, Float, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Transaction(Base):
    """Append-only ledger entry. Rows are created or deleted, never edited."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    position_id: Mapped[int] = mapped_column(ForeignKey("positions.id", ondelete="CASCADE"), index=True)
    schedule_id: Mapped[int | None] = mapped_column(
        ForeignKey("auto_invest_schedules.id", ondelete="SET NULL"),
        nullable=True,
    )

    symbol: Mapped[str] = mapped_column(String(32), index=True)
    type: Mapped[str] = mapped_column(String(16))                 # buy | sell | dividend
    date: Mapped[dt.date] = mapped_column(Date, index=True)          # trade date
    shares: Mapped[float] = mapped_column(Float, default=0.0)
    price: Mapped[float] = mapped_column(Float, default=0.0)
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    fee: Mapped[float] = mapped_column(Float, default=0.0)
    tax: Mapped[float] = mapped_column(Float, default=0.0)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)  # debit for buys, credit otherwise

    currency: Mapped[str] = mapped_column(String(3), default="USD")
    exchange_rate: Mapped[float | None] = mapped_column(Float, nullable=True)  # USD->KRW at trade date

    purchase_method: Mapped[str] = mapped_column(String(8), default="manual")  # manual | auto
    purchase_unit: Mapped[str] = mapped_column(String(8), default="shares")    # shares | amount
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    executed_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    position = relationship("Position", back_populates="transactions")
