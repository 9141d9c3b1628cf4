from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "AutoAPI Service"

    # System database holding data sources, API services, versions and audit logs.
    # Leave SYSTEM_DB_HOST empty to run on the local SQLite file.
    SYSTEM_DB_HOST: Optional[str] = None
    SYSTEM_DB_PORT: int = 3306
    SYSTEM_DB_USER: str = "root"
    SYSTEM_DB_PASSWORD: str = ""
    SYSTEM_DB_NAME: str = "autoapi"
    SQLITE_PATH: str = "autoapi.db"
    SQL_ECHO: bool = False

    LOG_LEVEL: str = "INFO"

    # Connection pools (seconds)
    POOL_ACQUIRE_TIMEOUT: float = 30.0
    POOL_HEALTH_CHECK_TIMEOUT: float = 1.0
    HTTP_TIMEOUT: float = 30.0

    # Test execution
    BATCH_MAX_WORKERS: int = 4
    # Doubles single quotes inside string parameters. Off by default: templates
    # keep their historical rendering unless explicitly opted in.
    TEMPLATE_ESCAPE_QUOTES: bool = False

    AUDIT_RETENTION_DAYS: int = 90

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def get_database_url(self) -> str:
        # Use MySQL if configured, otherwise fall back to SQLite
        if self.SYSTEM_DB_HOST:
            return (
                f"mysql+pymysql://{self.SYSTEM_DB_USER}:{self.SYSTEM_DB_PASSWORD}"
                f"@{self.SYSTEM_DB_HOST}:{self.SYSTEM_DB_PORT}/{self.SYSTEM_DB_NAME}"
            )
        return f"sqlite:///{self.SQLITE_PATH}"


settings = Settings()
