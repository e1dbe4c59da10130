import uuid
from sqlalchemy import Boolean, Column, DateTime, Float, Index, String, Text
from sqlalchemy.sql import func

from apps.api.app.db.session import Base


class Trade(Base):
    __tablename__ = "trades"
    __table_args__ = (
        Index("ix_trades_user_opened", "user_id", "opened_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True, nullable=False)

    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    symbol = Column(String, index=True, nullable=False)
    asset_class = Column(String, nullable=False)  # stocks | options | futures | crypto | forex
    direction = Column(String, nullable=False)  # long | short

    entry_price = Column(Float, nullable=False)
    exit_price = Column(Float, nullable=True)
    size = Column(Float, nullable=False)
    fees = Column(Float, nullable=False, default=0.0)

    # null while the trade is still open
    pnl = Column(Float, nullable=True)
    r_multiple = Column(Float, nullable=True)

    setup = Column(String, nullable=True)
    timeframe = Column(String, nullable=True)
    session = Column(String, nullable=True)  # Asia | London | NY
    confidence = Column(Float, nullable=True)
    plan_adherence = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    mistakes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now(), nullable=False)
