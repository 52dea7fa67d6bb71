"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent
DEFAULT_SESSION_SECRET = "fallback-secret-change-me"


class Settings:
    ENV: str
    APP_NAME: str
    APP_VERSION: str
    LOG_LEVEL: str
    DATABASE_URL: str
    SESSION_SECRET: str
    SESSION_COOKIE: str
    SESSION_MAX_AGE: int
    ALLOW_DEV_CORS: bool
    CORS_ORIGIN: str
    TRAINING_USER_EMAIL: str
    TRAINING_USER_PASSWORD: str
    TRAINING_ADMIN_EMAIL: str
    TRAINING_ADMIN_PASSWORD: str
    FORMS_RATE_LIMIT_MAX: int
    FORMS_RATE_LIMIT_WINDOW_SECONDS: int
    API_RATE_LIMIT_MAX: int
    API_RATE_LIMIT_WINDOW_SECONDS: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.APP_NAME = os.getenv("APP_NAME", "Alcohol Licence Training App")
        self.APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.SESSION_SECRET = os.getenv("SESSION_SECRET", DEFAULT_SESSION_SECRET)
        self.SESSION_COOKIE = os.getenv("SESSION_COOKIE", "alcohol_license_session")
        self.SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(24 * 60 * 60)))  # 24 hours
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "false").lower() == "true"
        self.CORS_ORIGIN = os.getenv("CORS_ORIGIN", "http://localhost:8000")
        self.TRAINING_USER_EMAIL = os.getenv("TRAINING_USER_EMAIL", "user@example.com")
        self.TRAINING_USER_PASSWORD = os.getenv("TRAINING_USER_PASSWORD", "password123")
        self.TRAINING_ADMIN_EMAIL = os.getenv("TRAINING_ADMIN_EMAIL", "admin@example.com")
        self.TRAINING_ADMIN_PASSWORD = os.getenv("TRAINING_ADMIN_PASSWORD", "admin123")
        self.FORMS_RATE_LIMIT_MAX = int(os.getenv("FORMS_RATE_LIMIT_MAX", "10"))
        self.FORMS_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("FORMS_RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))
        self.API_RATE_LIMIT_MAX = int(os.getenv("API_RATE_LIMIT_MAX", "30"))
        self.API_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("API_RATE_LIMIT_WINDOW_SECONDS", "60"))
        self._validate()

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    @property
    def rate_limiting_enabled(self) -> bool:
        return self.ENV != "test"

    def _validate(self):
        if self.is_production and self.SESSION_SECRET == DEFAULT_SESSION_SECRET:
            raise RuntimeError("SESSION_SECRET must be set to a non-default value in production")
        if self.SESSION_MAX_AGE <= 0:
            raise RuntimeError("SESSION_MAX_AGE must be a positive number of seconds")


settings = Settings()
