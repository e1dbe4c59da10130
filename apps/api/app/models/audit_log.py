import uuid

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.sql import func

from apps.api.app.db.session import Base


class AuditLog(Base):
    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_user_action", "user_id", "action"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True, nullable=True)
    action = Column(String, index=True, nullable=False)  # e.g. trade.create, risk.lockout.triggered
    entity_type = Column(String, nullable=True)  # trade | risk_settings
    entity_id = Column(String, nullable=True)
    details = Column(Text, nullable=True)  # json
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
