# chirp/core/config.py

from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # MongoDB settings
    MONGODB_URI: str = Field(default="mongodb://localhost:27017")
    MONGODB_DB: str = Field(default="chirp")
    # update_many is wrapped in a transaction only when the deployment is a replica set
    MONGODB_TRANSACTIONS: bool = Field(default=False)

    # Auth/JWT settings (tokens are issued by the auth service)
    SECRET_KEY: str = Field(default="change-me")
    JWT_ALGORITHM: str = Field(default="HS256")

    # Messaging
    MESSAGE_MAX_LENGTH: int = Field(default=1000, ge=1)

    # Realtime fan-out between workers; unset means single-process delivery
    REDIS_URL: Optional[str] = Field(default=None)
    # upper bound on one realtime write so a stalled socket cannot hold up a send
    PUSH_TIMEOUT_SECONDS: float = Field(default=2.0, gt=0)

    LOG_LEVEL: str = Field(default="INFO")
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])


settings = Settings()
