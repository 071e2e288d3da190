from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL (usage records)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "counselflow"
    postgres_password: str = "changeme"
    postgres_db: str = "counselflow"

    @property
    def postgres_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Usage store backend: "memory" | "sql"
    usage_store: str = "memory"

    # Self-hosted providers (enabled by flag, no key needed)
    ollama_enabled: bool = True
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:latest"

    legal_bert_enabled: bool = True
    legal_bert_base_url: str = "http://localhost:8081"
    legal_bert_model: str = "nlpaueb/legal-bert-base-uncased"

    # Premium providers (enabled iff an API key is present)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-haiku-latest"

    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash"

    # Timeouts (seconds)
    provider_timeout_seconds: float = 30.0
    health_timeout_seconds: float = 5.0

    # Cache
    cache_ttl_seconds: int = 3600
    cache_sweep_interval_seconds: int = 600

    # Budgets
    default_monthly_budget: Decimal = Decimal("50.00")

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.usage_store not in ("memory", "sql"):
        errors.append("USAGE_STORE must be 'memory' or 'sql'")

    if settings.health_timeout_seconds > 5:
        errors.append("HEALTH_TIMEOUT_SECONDS must not exceed 5 seconds")

    if settings.default_monthly_budget < 0:
        errors.append("DEFAULT_MONTHLY_BUDGET must not be negative")

    if settings.app_env == "production":
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")
        if settings.usage_store != "sql":
            errors.append("USAGE_STORE must be 'sql' in production (usage records must be durable)")
        if settings.postgres_password in ("changeme", ""):
            errors.append("POSTGRES_PASSWORD must be set in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
