from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Chat Store - required from .env
    DATABASE_URL: str

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # Comma separated list, "*" allows any origin (REST and sockets)
    CORS_ALLOWED_ORIGINS: str = "*"

    # Number of characters kept in the newMessage notification preview
    NOTIFICATION_PREVIEW_LENGTH: int = 50

    # When enabled, room joins must match the identity given at connect time
    ENFORCE_CONNECTION_IDENTITY: bool = False

    @property
    def cors_origins(self) -> list[str] | str:
        """Origins in the shape expected by python-socketio and CORSMiddleware."""
        origins = [o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()]
        if not origins or "*" in origins:
            return "*"
        return origins


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every access.
    """
    return Settings()


# Global settings instance
settings = get_settings()
