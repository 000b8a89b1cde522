import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class ConfigError(RuntimeError):
    pass


class Settings(BaseModel):
    """Process-wide configuration, built once at startup."""

    mongodb_uri: str
    jwt_secret: str
    database_name: str = "inventory"
    port: int = 4000
    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        load_dotenv(env_file)

        mongodb_uri = os.getenv("MONGODB_URI") or os.getenv("DATABASE_URL")
        if not mongodb_uri:
            raise ConfigError("MONGODB_URI not defined in environment variables")
        jwt_secret = os.getenv("JWT_SECRET")
        if not jwt_secret:
            raise ConfigError("JWT_SECRET not defined in environment variables")

        port = os.getenv("PORT", "4000")
        try:
            port = int(port)
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {port!r}")

        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

        return cls(
            mongodb_uri=mongodb_uri,
            jwt_secret=jwt_secret,
            database_name=os.getenv("DATABASE_NAME", "inventory"),
            port=port,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=origins or ["*"],
        )
