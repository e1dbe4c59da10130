from apps.api.app.db.session import Base
from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func
import uuid


PLAN_FREE = "free"
PLAN_STARTER = "starter"
PLAN_PRO = "pro"
PLAN_VALUES = (PLAN_FREE, PLAN_STARTER, PLAN_PRO)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    plan = Column(String, nullable=False, default=PLAN_FREE)  # free | starter | pro
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
