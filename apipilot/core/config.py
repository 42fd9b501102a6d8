# apipilot/core/config.py
import os
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./apipilot.db")
    DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # inference backends
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o")
    ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
    ANTHROPIC_BASE_URL: str = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
    ANTHROPIC_VERSION: str = os.getenv("ANTHROPIC_VERSION", "2023-06-01")
    INFERENCE_MAX_RETRIES: int = int(os.getenv("INFERENCE_MAX_RETRIES", "2"))
    INFERENCE_RETRY_BASE_DELAY: float = float(os.getenv("INFERENCE_RETRY_BASE_DELAY", "2.0"))
    INFERENCE_MAX_TOKENS: int = int(os.getenv("INFERENCE_MAX_TOKENS", "8192"))
    INFERENCE_TIMEOUT: float = float(os.getenv("INFERENCE_TIMEOUT", "120.0"))

    # file store polling
    FILE_POLL_INTERVAL: float = float(os.getenv("FILE_POLL_INTERVAL", "2.0"))
    FILE_POLL_MAX_ATTEMPTS: int = int(os.getenv("FILE_POLL_MAX_ATTEMPTS", "30"))

    # execution engine
    EXECUTION_TIMEOUT: float = float(os.getenv("EXECUTION_TIMEOUT", "30.0"))
    CONNECTION_TEST_TIMEOUT: float = float(os.getenv("CONNECTION_TEST_TIMEOUT", "15.0"))
    AUTO_INTELLIGENCE: bool = os.getenv("AUTO_INTELLIGENCE", "true").lower() == "true"

    MAX_UPLOAD_SIZE: int = int(os.getenv("MAX_UPLOAD_SIZE", str(50 * 1024 * 1024)))
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "")

    class Config:
        env_file = ".env"

settings = Settings()
