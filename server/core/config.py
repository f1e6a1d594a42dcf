"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=8010, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    workers: int = Field(default=1, env="WORKERS", ge=1, le=8)

    # Security
    cors_origins: List[str] = Field(default=["*"], env="CORS_ORIGINS")

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/flows.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    database_pool_size: int = Field(default=20, env="DATABASE_POOL_SIZE", ge=5, le=100)
    database_max_overflow: int = Field(default=30, env="DATABASE_MAX_OVERFLOW", ge=10, le=100)

    # Cache / Queue Backend
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    redis_enabled: bool = Field(default=False, env="REDIS_ENABLED")
    cache_ttl: int = Field(default=3600, env="CACHE_TTL", ge=60)

    # Flow Engine
    flow_worker_concurrency: int = Field(default=5, env="FLOW_WORKER_CONCURRENCY", ge=1, le=100)
    flow_worker_enabled: bool = Field(default=True, env="FLOW_WORKER_ENABLED")
    flow_job_attempts: int = Field(default=3, env="FLOW_JOB_ATTEMPTS", ge=1, le=20)
    flow_job_backoff_ms: int = Field(default=5000, env="FLOW_JOB_BACKOFF_MS", ge=0)
    flow_queue_name: str = Field(default="flow-execution", env="FLOW_QUEUE_NAME")
    step_result_ttl: int = Field(default=604800, env="STEP_RESULT_TTL", ge=60)  # 7 days
    dlq_enabled: bool = Field(default=False, env="DLQ_ENABLED")

    # Node collaborators
    http_request_timeout: float = Field(default=30.0, env="HTTP_REQUEST_TIMEOUT", gt=0, le=300)
    messaging_service_url: str = Field(default="http://localhost:5000", env="MESSAGING_SERVICE_URL")
    messaging_timeout: float = Field(default=10.0, env="MESSAGING_TIMEOUT", gt=0, le=120)

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured database is SQLite (no connection pool sizing)."""
        return self.database_url.startswith("sqlite")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
        "env_nested_delimiter": "__",
    }
