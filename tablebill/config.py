from __future__ import annotations

import secrets

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "TableBill"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_webhook_tolerance_seconds: int = 300
    stripe_api_version: str = "2023-10-16"

    # Super-admin dashboard
    super_admin_password: str | None = None
    admin_session_ttl_seconds: int = 86400
    admin_subscription_list_limit: int = 50

    # Security
    secret_key: str = ""  # Will be generated if empty
    cors_origins: list[str] = []  # Empty by default for security
    allowed_hosts: list[str] = ["localhost", "127.0.0.1"]

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "tablebill"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125
    metrics_schema_version: str = "tablebill.v1"

    # Auth controls
    auth_rate_limit_window_seconds: int = 60
    auth_rate_limit_max_requests: int = 5

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Generate a random secret key if not provided
        if not self.secret_key:
            self.secret_key = secrets.token_urlsafe(32)

    @property
    def admin_login_enabled(self) -> bool:
        """Return True when a super-admin password has been configured."""
        return bool(self.super_admin_password)

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
