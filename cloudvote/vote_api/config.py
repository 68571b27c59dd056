"""Configuration management for the CloudVote API service."""
import socket
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    SERVICE_NAME: str = "cloudvote-api"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Pod identity (set by Kubernetes)
    HOSTNAME: Optional[str] = None

    # PostgreSQL configuration
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "cloudvote"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"

    # Connection pool
    POSTGRES_POOL_MIN_SIZE: int = 0
    POSTGRES_POOL_MAX_SIZE: int = 10
    POSTGRES_POOL_TIMEOUT: float = 10.0
    POSTGRES_POOL_QUEUE_LIMIT: int = 0  # 0 = unbounded
    AUTO_CREATE_SCHEMA: bool = True

    # Audit log
    AUDIT_TAIL_LIMIT: int = 50
    AUDIT_QUEUE_SIZE: int = 1000
    AUDIT_WORKERS: int = 1
    AUDIT_DRAIN_TIMEOUT: float = 10.0

    # Rate limiting
    RATE_LIMIT: str = "100000/second"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def pod_id(self) -> str:
        """Identity of this replica, written into audit entries."""
        return self.HOSTNAME or socket.gethostname()


settings = Settings()
