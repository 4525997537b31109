# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar, Optional
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    # Identity tokens live for a week, reset tokens for 15 minutes
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60
    RESET_TOKEN_EXPIRE_MINUTES: int = 15
    DATABASE_URL: str = "sqlite:///./database_aqylal.db"

    FRONTEND_URL: Optional[str] = None
    COOKIE_SECURE: bool = False

    DEFAULT_LANGUAGE: str = "ru"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file: ClassVar[str] = str(env_path)
        extra: ClassVar[str] = "ignore"

settings = Settings()
