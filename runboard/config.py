from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Runboard configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./runboard.db")
    DEBUG = os.getenv("DEBUG", "False").lower() == "true"

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

    # Ranking settings
    # Upper bound on runs fetched for one comparison group. Groups larger than
    # this are ranked from a truncated page.
    GROUP_FETCH_LIMIT = int(os.getenv("GROUP_FETCH_LIMIT", 5000))
    BATCH_SIZE = int(os.getenv("BATCH_SIZE", 500))

    # API settings
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    @classmethod
    def cors_origins(cls) -> list[str]:
        return [origin.strip() for origin in cls.CORS_ORIGINS.split(",") if origin.strip()]
