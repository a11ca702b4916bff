import os

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuration class for environment variables and engine settings.
    """

    # Service settings
    service_name: str = os.getenv("SERVICE_NAME", "migrator")
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"

    # Logging settings
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    json_logs: bool = os.getenv("JSON_LOGS", "False").lower() == "true"

    # Database settings
    database_url: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./migrator.db")

    # Connection pool settings (ignored for SQLite)
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_pre_ping: bool = os.getenv("DB_POOL_PRE_PING", "True").lower() == "true"
    db_echo: bool = os.getenv("DB_ECHO", "False").lower() == "true"

    # Per-call timeout in seconds
    db_operation_timeout: float = float(os.getenv("DB_OPERATION_TIMEOUT", "30"))
    db_health_check_table: str | None = os.getenv("DB_HEALTH_CHECK_TABLE", None)

    # Retry settings
    max_retries: int = int(os.getenv("MAX_RETRIES", "3"))
    retry_base_delay: float = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
    retry_max_delay: float = float(os.getenv("RETRY_MAX_DELAY", "16.0"))

    # Migration settings
    migrations_dir: str = os.getenv("MIGRATIONS_DIR", "db/migrations")
    migrations_table: str = os.getenv("MIGRATIONS_TABLE", "migrations")
    migrations_use_transaction: bool = (
        os.getenv("MIGRATIONS_USE_TRANSACTION", "True").lower() == "true"
    )

    @property
    def logging_config(self) -> dict:
        """
        Returns logging configuration based on environment.
        """
        base_config = {
            "app_name": self.service_name,
            "log_level": self.log_level,
            "json_logs": self.json_logs,
        }

        if self.environment == "development":
            base_config.update({"json_logs": False, "log_level": "DEBUG" if self.debug else self.log_level})

        return base_config

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
