# backend/models/session.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func

from database import Base

# One row per issued identity token; deleting the row revokes the token
class UserSession(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user_ids.id"), nullable=False, index=True)
    token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# Single-use tokens sent by email (password reset)
class EmailToken(Base):
    __tablename__ = "email_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user_ids.id"), nullable=False, index=True)
    token = Column(Text, nullable=False)
    type = Column(String(32), nullable=False, default="password_reset")
    expires_at = Column(DateTime, nullable=False)
