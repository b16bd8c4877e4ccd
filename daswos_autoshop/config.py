"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./daswos_autoshop.db"
    use_fallback_storage: bool = True

    # External Services
    catalog_api_base: str = "http://localhost:8001"
    payment_api_base: str = "http://localhost:8003"

    # Service
    service_name: str = "daswos-autoshop"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 5.0
    payment_max_retries: int = 3
    payment_backoff_base: float = 0.5  # Exponential backoff base in seconds

    # AutoShop scheduler
    autoshop_cycle_interval_seconds: float = 60.0
    autoshop_default_duration_minutes: int = 30
    random_mode_confidence: int = 50  # 0-100, used when no scoring signal exists

    # Ledger
    ledger_max_conflict_retries: int = 3


settings = Settings()
