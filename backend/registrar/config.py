"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    MAX_SEMESTER: int
    ALLOW_DEV_CORS: bool
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'registrar.db'}")
        self.MAX_SEMESTER = int(os.getenv("MAX_SEMESTER", "8"))
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.MAX_SEMESTER < 1:
            raise RuntimeError("MAX_SEMESTER must be a positive integer")
        if self.ENV != "dev" and "DATABASE_URL" not in os.environ:
            raise RuntimeError("DATABASE_URL must be set explicitly in non-dev environments")


settings = Settings()
