from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    PROJECT_NAME: str = "Chatbot Flow Engine"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    # Database (flow graph store)
    DATABASE_URL: str = "sqlite:///./data/chatbot.db"
    DATABASE_ECHO: bool = False

    # Flow execution bounds
    CHATBOT_MAX_DEPTH: int = 100
    CHATBOT_EXECUTION_TIMEOUT: float = 30.0  # seconds
    CHATBOT_PERSIST_TIMEOUT: float = 0.5  # seconds per trace/execution write

    # Conditions that match no known pattern evaluate to this value
    CHATBOT_UNKNOWN_CONDITION_DEFAULT: bool = True

    # AI capability boundary
    AI_CALL_TIMEOUT: float = 10.0  # seconds

    # Flow definitions
    CHATBOT_FLOWS_PATH: str = "ai/chatbot/flows"
    DEFAULT_TENANT_ID: Optional[str] = None

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if not v:
            raise ValueError("DATABASE_URL is required")
        return v

    @field_validator("CHATBOT_MAX_DEPTH")
    @classmethod
    def validate_max_depth(cls, v: int) -> int:
        if v < 1:
            raise ValueError("CHATBOT_MAX_DEPTH must be at least 1")
        return v

    @field_validator("CHATBOT_EXECUTION_TIMEOUT", "CHATBOT_PERSIST_TIMEOUT", "AI_CALL_TIMEOUT")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
