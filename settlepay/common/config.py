"""Central environment-driven settings for the settlement service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "settlement"
    log_level: str = "INFO"
    database_url: str
    api_key: str
    paystack_secret_key: str
    paystack_base_url: str = "https://api.paystack.co"
    paystack_currency: str = "XOF"
    paystack_timeout_seconds: float = 15.0
    # Sandbox only: accept webhook deliveries that carry no signature header.
    paystack_webhook_allow_unsigned: bool = False
    auth_jwt_secret: str
    auth_jwt_algorithm: str = "HS256"
    auth_jwt_audience: str | None = "authenticated"
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    pending_sweep_minutes: int = 30
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
