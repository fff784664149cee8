from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./rentalsync.db"
    app_version: str = "2026-10-19.v1"

    # Public base URL of this API; webhook callbacks are built from it.
    api_url: str = "http://localhost:8000"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Hostify (upstream PMS) ----
    hostify_api_key: str | None = None
    hostify_base_url: str = "https://api-rms.hostify.com"
    hostify_webhook_auth_secret: str | None = None

    hostify_max_retries: int = 3
    hostify_retry_base_seconds: float = 1.0
    hostify_retry_max_seconds: float = 30.0
    hostify_timeout_seconds: float = 20.0
    hostify_max_concurrent_requests: int = 2
    hostify_max_pages: int = 1000

    # SNS SubscribeURL must live under this domain
    webhook_subscribe_domain: str = ".amazonaws.com"

    # ---- Scheduler ----
    scheduler_enabled: bool = False
    sync_listings_interval_seconds: int = 60 * 60
    sync_reservations_interval_seconds: int = 5 * 60
    sync_messages_interval_seconds: int = 5 * 60
    sync_reviews_interval_seconds: int = 30 * 60

    # consecutive failures before the alert hook fires
    health_alert_threshold: int = 3

    # ---- Celery ----
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_task_always_eager: bool = False

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if self.hostify_max_retries < 1:
            object.__setattr__(self, "hostify_max_retries", 1)

        if is_prod:
            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")

            # Unattended sync in prod without credentials would only ever record failures
            if self.scheduler_enabled and not self.hostify_api_key:
                raise ValueError("CONFIG: scheduler_enabled requires hostify_api_key in prod")


settings = Settings()
