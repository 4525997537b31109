# backend/models/settings.py
from sqlalchemy import Column, ForeignKey, Integer, String

from database import Base

class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user_ids.id"), nullable=False, unique=True)
    language = Column(String(8), nullable=False, default="ru")
