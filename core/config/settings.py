from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Optional
from dotenv import load_dotenv, find_dotenv

# Load environment variables from .env file (searching parent directories)
load_dotenv(find_dotenv())


class Settings(BaseSettings):
    """
    Unified settings for the broker sidecar.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ═══════════════════════════════════════════════════════════════════
    # Application Settings
    # ═══════════════════════════════════════════════════════════════════
    PROJECT_NAME: str = "Mesh Broker"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development", description="development, staging, production")
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # ═══════════════════════════════════════════════════════════════════
    # Server Settings
    # ═══════════════════════════════════════════════════════════════════
    HOST: str = "0.0.0.0"
    PORT: int = 8380
    # Registry state lives in one process; more workers would split it.
    WORKERS: int = 1

    # ═══════════════════════════════════════════════════════════════════
    # gRPC Settings
    # ═══════════════════════════════════════════════════════════════════
    GRPC_ENABLED: bool = True
    GRPC_PORT: int = 50051

    # ═══════════════════════════════════════════════════════════════════
    # Monitoring Settings
    # ═══════════════════════════════════════════════════════════════════
    # Standalone Prometheus exporter; /metrics on the API port is always served.
    METRICS_PORT: Optional[int] = None

    # ═══════════════════════════════════════════════════════════════════
    # Dispatch Settings
    # ═══════════════════════════════════════════════════════════════════
    BROKER_MAX_ATTEMPTS: int = Field(default=3, description="Attempts per point-to-point send")
    BROKER_REQUEST_TIMEOUT: float = Field(default=5.0, description="Per-call timeout in seconds")
    BROKER_RETRY_BASE_DELAY: float = Field(default=0.0, description="0 retries immediately")

    # ═══════════════════════════════════════════════════════════════════
    # Circuit Breaker Settings
    # ═══════════════════════════════════════════════════════════════════
    CIRCUIT_FAILURE_THRESHOLD: int = 3
    CIRCUIT_COOLDOWN_SECONDS: float = 10.0

    # ═══════════════════════════════════════════════════════════════════
    # Durable Log Settings
    # ═══════════════════════════════════════════════════════════════════
    DURABLE_LOG_BACKEND: str = Field(default="file", description="file, redis")
    DURABLE_LOG_PATH: str = "data/storage.jsonl"

    # ═══════════════════════════════════════════════════════════════════
    # Redis Settings
    # ═══════════════════════════════════════════════════════════════════
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "broker"
    REDIS_MAX_CONNECTIONS: int = 50

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @field_validator('WORKERS')
    @classmethod
    def validate_workers(cls, v):
        """Registry ownership is single-process; refuse to fork it"""
        if v != 1:
            raise ValueError(
                "WORKERS must be 1: the service registry is owned by a single process "
                "and is not replicated across workers"
            )
        return v

    @field_validator('BROKER_MAX_ATTEMPTS', 'CIRCUIT_FAILURE_THRESHOLD')
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator('DURABLE_LOG_BACKEND')
    @classmethod
    def validate_backend(cls, v):
        v = v.lower()
        if v not in {"file", "redis"}:
            raise ValueError(f"Unknown durable log backend: {v}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def reset_settings_cache() -> None:
    """Drop the cached settings (tests and reloads)"""
    get_settings.cache_clear()
