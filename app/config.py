"""
Application settings, read from the environment and ``.env``.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./data/duo.db"
    DATA_DIR: str = "./data"

    # Security
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 30

    DEBUG: bool = False

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    FRONTEND_URL: str = "http://localhost:3000"

    # Family invitations
    INVITE_CODE_TTL_HOURS: int = 24

    # AI providers (primary: Gemini, secondary: OpenAI)
    GEMINI_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    AI_TIMEOUT_SECONDS: float = 45.0
    RESPONSE_LANGUAGE: str = "Russian"

    # Ordered candidate models, most capable first
    GEMINI_TEXT_MODELS: List[str] = [
        "gemini-2.5-flash-lite",
        "gemini-2.5-flash",
        "gemini-2.0-flash-exp",
        "gemini-1.5-flash",
    ]
    GEMINI_IMAGE_MODELS: List[str] = [
        "gemini-2.5-flash-lite",
        "gemini-2.5-flash",
        "gemini-2.0-flash",
    ]
    GEMINI_AUDIO_MODELS: List[str] = [
        "gemini-2.5-flash",
        "gemini-2.5-flash-lite",
    ]
    OPENAI_TEXT_MODELS: List[str] = ["gpt-4o", "gpt-4o-mini"]
    OPENAI_IMAGE_MODELS: List[str] = ["gpt-4o", "gpt-4o-mini"]
    OPENAI_AUDIO_MODELS: List[str] = ["gpt-4o-audio-preview", "gpt-4o-mini-audio-preview"]

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
