from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    PROJECT_NAME: str = "Failure Triage Engine"
    API_V1_STR: str = "/api/v1"
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./failure_triage.db"
    DATABASE_ECHO: bool = False

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "logs/app.log"

    # Classification
    DEFAULT_TIME_WINDOW: str = "30"
    CLASSIFICATION_RULES_FILE: Optional[str] = None

    # LLM (deep analysis of defect groups)
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: str = "glm-4-air"
    LLM_TEMPERATURE: float = 0.3
    LLM_MAX_TOKENS: int = 2000
    LLM_TIMEOUT: int = 60
    LLM_MAX_RETRIES: int = 2

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding='utf-8', case_sensitive=True, extra='ignore')

settings = Settings()
