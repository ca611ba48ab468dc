"""
Configuration settings for the calendar state service.
Environment variables override defaults.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional

THIRTY_DAYS = 60 * 60 * 24 * 30


@dataclass
class Settings:
    """Service configuration"""

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    # CORS
    CORS_ORIGINS: List[str] = field(default_factory=lambda: ["*"])

    # Storage: memory | redis | mongo (empty = pick from the URLs below)
    STORE_BACKEND: str = ""
    REDIS_URL: Optional[str] = None
    DATABASE_URL: Optional[str] = None
    DATABASE_NAME: str = "calendar"
    STATE_TTL_SECONDS: int = THIRTY_DAYS

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    def __post_init__(self):
        """Load from environment variables"""
        for key in self.__dataclass_fields__:
            env_value = os.getenv(key)
            if env_value is None:
                continue
            field_type = self.__dataclass_fields__[key].type
            if field_type == bool:
                setattr(self, key, env_value.lower() in ("true", "1", "yes"))
            elif field_type == int:
                setattr(self, key, int(env_value))
            elif field_type == List[str]:
                setattr(self, key, [v.strip() for v in env_value.split(",") if v.strip()])
            else:
                setattr(self, key, env_value)


# Global settings instance
settings = Settings()
