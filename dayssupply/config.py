from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Days' Supply Pro API"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    db_auto_create_schema: bool = False

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_webhook_tolerance_seconds: int = 300
    stripe_price_id: str | None = None
    stripe_trial_days: int = 30

    # Site / redirects
    site_url: str = "http://localhost:3000"
    checkout_success_path: str = "/app?checkout=success"
    checkout_cancel_path: str = "/pricing?checkout=cancel"
    portal_return_path: str = "/app"

    # Supabase (identity provider)
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    supabase_timeout_seconds: float = 10.0

    # Gating switches
    auth_disabled: bool = False
    screenshot_mode: bool = False

    # Client reconciliation defaults
    recent_checkout_window_seconds: int = 600
    activation_max_attempts: int = 8
    activation_delay_seconds: float = 1.5

    # Security
    cors_origins: list[str] = []  # Empty by default for security
    trusted_hosts: list[str] = []

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "dayssupply"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125
    metrics_schema_version: str = "dayssupply.v1"

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    def site_link(self, path: str) -> str:
        """Join a path onto the public site URL."""
        return f"{self.site_url.rstrip('/')}/{path.lstrip('/')}"

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
