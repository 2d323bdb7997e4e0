from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "postgresql://docservice:docservice@db:5432/docservice"

    # Application
    app_name: str = "HR Document Retention Service"
    debug: bool = False
    log_level: str = "INFO"

    # Logging
    log_dir: str = ""  # Empty disables file logging (e.g. /app/logs in production)
    log_json: bool = False  # Enable JSON logging for production
    enable_request_logging: bool = True
    auto_create_tables: bool = False  # Create tables on startup instead of running Alembic (dev/SQLite)

    # Document storage (local blob store)
    document_storage_path: str = "/app/storage/documents"

    # Redis (retention lock backend)
    redis_url: str = "redis://redis:6379/0"

    # Celery (distributed task queue)
    celery_broker_url: str = "redis://redis:6379/1"  # Use DB 1 for broker
    celery_task_track_started: bool = True
    celery_task_time_limit: int = 1800  # 30 minutes hard limit
    celery_worker_prefetch_multiplier: int = 1  # Retention jobs are long-running
    use_celery: bool = False  # Set to True to use Celery instead of the in-process job pool

    # CORS (comma-separated origins)
    cors_origins: str = ""

    # Retention engine
    retention_batch_size: int = 100  # Documents fetched per candidate page
    retention_max_workers: int = 1  # Per-document worker pool size inside one run
    retention_progress_flush_every: int = 10  # Persist job counters every N documents
    retention_failure_log_limit: int = 100  # Max per-document failures kept on the job
    retention_blob_delete_timeout: float = 30.0  # Seconds
    retention_legal_hold_wait: float = 60.0  # Seconds a hold waits for an in-flight blob delete
    retention_lock_backend: str = "memory"  # memory | redis
    retention_lock_ttl_seconds: int = 1800
    retention_job_pool_size: int = 2  # Background threads running whole jobs

    # Retention scheduling (APScheduler, used when use_celery is False)
    enable_retention_scheduler: bool = False
    retention_apply_interval_hours: int = 24
    retention_actions_interval_hours: int = 24

    # Event publishing (HTTP webhook)
    event_webhook_url: str = ""  # Empty disables event delivery
    event_webhook_timeout: float = 5.0
    event_webhook_secret: str = ""  # HMAC-SHA256 signing key, empty sends unsigned

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins"""
        return [origin.strip() for origin in self.cors_origins.split(',') if origin.strip()]

    @field_validator('retention_lock_backend')
    @classmethod
    def validate_lock_backend(cls, v):
        if v not in ("memory", "redis"):
            raise ValueError("retention_lock_backend must be 'memory' or 'redis'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
