from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Price Cache"
    app_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    schema_version: str = "1.0"

    # Storage
    database_url: str = "sqlite:///./price_cache.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_seconds: int = 30
    quote_store_backend: str = "sql"

    # Resolution
    quote_ttl_seconds: int = 60
    request_timeout_seconds: float = 8.0

    # Fallback source
    fallback_batch_size: int = 5
    fallback_mirrors: list[str] = [
        "https://query2.finance.yahoo.com/v8/finance/chart",
        "https://query1.finance.yahoo.com/v8/finance/chart",
    ]
    fallback_default_exchange: str = "NSE"
    fallback_user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # Primary source
    primary_base_url: str = "https://api.groww.in/v1"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


settings = Settings()
