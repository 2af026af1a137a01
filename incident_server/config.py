"""
File: config.py
Purpose: Centralized configuration using environment variables (12-factor).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Load service configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    ENV: str = "prod"
    SERVICE_NAME: str = "incident-server"
    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # Shared secret for the HTTP surface; empty disables the check
    API_KEY: str = ""

    # Persistence: "postgres" or "memory"
    STORE_BACKEND: str = "memory"
    PG_HOST: str = ""
    PG_PORT: int = 5432
    PG_DB: str = "incidentdb"
    PG_USER: str = ""
    PG_PASS: str = ""
    PG_SSLMODE: str = "require"
    PG_POOL_MIN: int = 1
    PG_POOL_MAX: int = 5

    # Corpus staging storage (Azure Blob; local directory when BLOB_CONN is empty)
    BLOB_CONN: str = ""
    BLOB_CONTAINER: str = "incident-corpus"
    CORPUS_PREFIX: str = "incidents/closed/"
    STAGING_DIR: str = "./corpus-staging"

    # Sync pipeline
    SYNC_BATCH_SIZE: int = 50
    SYNC_MAX_ATTEMPTS: int = 3
    SYNC_TRIGGER: str = "on-demand"  # "schedule" | "on-demand"
    SYNC_CRON: str = "0 * * * *"

    # Batch-job metrics
    PUSHGATEWAY_URL: str = ""
    METRICS_JOB: str = "incident-corpus-sync"

    # Downstream services
    RETRIEVAL_URL: str = ""
    RETRIEVAL_TOKEN: str = ""
    RETRIEVAL_TOP_K: int = 5
    INGEST_URL: str = ""
    INGEST_DATA_SOURCE: str = "incident-corpus"
    LLM_BASE_URL: str = ""
    LLM_MODEL: str = "qwen2.5:7b"
    LLM_API_KEY: str = ""
    HTTP_TIMEOUT_SECS: float = 25.0
    HTTP_RETRIES: int = 2  # attempts per downstream call, transport errors only

    @property
    def PG_DSN(self) -> str:
        """Return a libpq DSN built from the PG_* settings."""
        return (
            f"host={self.PG_HOST} port={self.PG_PORT} dbname={self.PG_DB} "
            f"user={self.PG_USER} password={self.PG_PASS} sslmode={self.PG_SSLMODE}"
        )


settings = Settings()
