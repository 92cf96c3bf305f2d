# backend/territory/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    app_version: str = "2026-10-19.v1"
    database_url: str = "sqlite:///./territory.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Auth ----
    auth_mode: str = "dev"  # dev only for now
    dev_header_user_email: str = "X-User-Email"
    dev_header_user_role: str = "X-User-Role"
    dev_auto_provision: bool = True

    # ---- Activation sweeper ----
    sweeper_mode: str = "inprocess"  # inprocess|celery|off
    sweep_interval_seconds: int = 300
    sweep_startup_delay_seconds: float = 1.0
    sweep_batch_limit: int = 500

    # ---- Celery ----
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None

    # ---- Notifications ----
    notification_webhook_url: str | None = None
    notification_timeout_seconds: float = 10.0

    # ---- Logging ----
    log_level: str = "INFO"
    sql_log_level: str = "WARNING"

    def model_post_init(self, __context) -> None:
        mode = (self.sweeper_mode or "inprocess").strip().lower()
        if mode not in ("inprocess", "celery", "off"):
            raise ValueError(f"sweeper_mode must be inprocess|celery|off, got {self.sweeper_mode!r}")
        object.__setattr__(self, "sweeper_mode", mode)

        env = (self.app_env or "local").strip().lower()
        if env in ("prod", "production"):
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")


settings = Settings()
