"""
Application configuration — environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    DATABASE = os.environ.get("DATABASE", str(BASE_DIR / "classroom.db"))
    JSON_SORT_KEYS = False

    # Identity cookies (user_id / user_role / user_name)
    COOKIE_MAX_AGE = int(os.environ.get("COOKIE_MAX_AGE", str(7 * 86400)))
    COOKIE_SECURE = False

    # Upload limits
    MAX_CONTENT_LENGTH = 4 * 1024 * 1024  # 4 MB

    # Language model (OpenAI-compatible endpoint, SiliconFlow by default)
    LLM_PROVIDER = os.environ.get("LLM_PROVIDER", "openai")  # "openai" or "anthropic"
    LLM_MODEL = os.environ.get("LLM_MODEL", "Qwen/Qwen2.5-7B-Instruct")
    LLM_BASE_URL = os.environ.get("LLM_BASE_URL", "https://api.siliconflow.cn/v1")
    LLM_API_KEY = os.environ.get("LLM_API_KEY", "") or os.environ.get("SILICONFLOW_API_KEY", "")
    LLM_MAX_TOKENS = int(os.environ.get("LLM_MAX_TOKENS", "4096"))
    LLM_TIMEOUT_SECONDS = float(os.environ.get("LLM_TIMEOUT_SECONDS", "120"))
    LLM_MAX_ATTEMPTS = int(os.environ.get("LLM_MAX_ATTEMPTS", "1"))

    # Public link encoded in assignment QR codes
    ASSIGNMENT_LINK_BASE_URL = os.environ.get("ASSIGNMENT_LINK_BASE_URL", "http://localhost:8081")

    # Background grading
    GRADING_DELAY_SECONDS = int(os.environ.get("GRADING_DELAY_SECONDS", "1"))
    TASK_WORKERS = int(os.environ.get("TASK_WORKERS", "4"))
    TASKS_EAGER = False

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Redis (task queue + rate limit storage)
    REDIS_URL = os.environ.get("REDIS_URL", "")

    # Rate limiting (defaults to in-memory; set REDIS_URL for Redis-backed)
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "") or "memory://"


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if cls.LLM_PROVIDER not in ("openai", "anthropic", "claude"):
            errors.append(f"LLM_PROVIDER must be 'openai' or 'anthropic', got {cls.LLM_PROVIDER!r}.")

        if not cls.LLM_API_KEY:
            warnings.warn("LLM_API_KEY is not set; AI grading, generation and chat will fail.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    TASKS_EAGER = True
    GRADING_DELAY_SECONDS = 0


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
