# models/user.py
from sqlalchemy.orm import Mapped, mapped_column, relationship
from database import Base

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # link to the identity provider's user id (Supabase auth.users.id)
    supabase_user_id: Mapped[str] = mapped_column(unique=True, index=True)

    email: Mapped[str] = mapped_column(unique=True, index=True)

    # base currency used for combined totals: USD | KRW
    currency: Mapped[str] = mapped_column(default="USD")

    positions = relationship("Position", back_populates="owner", cascade="all, delete-orphan")
    watchlists = relationship("Watchlist", back_populates="owner", cascade="all, delete-orphan")
