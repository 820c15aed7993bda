"""Configuration management for the payroll calculator."""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    engine_version: str
    batch_max_workers: int
    default_pay_frequency: str
    child_support_ceiling_percent: Decimal
    debug: bool

    @property
    def DEBUG(self) -> bool:
        """Alias for debug."""
        return self.debug

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///payroll_calc.db"),
            engine_version=os.getenv("ENGINE_VERSION", "1.0.0"),
            batch_max_workers=max(1, int(os.getenv("BATCH_MAX_WORKERS", "4"))),
            default_pay_frequency=os.getenv("DEFAULT_PAY_FREQUENCY", "monthly"),
            child_support_ceiling_percent=Decimal(
                os.getenv("CHILD_SUPPORT_CEILING_PERCENT", "60")
            ),
            debug=os.getenv("DEBUG", "false").lower() == "true",
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
