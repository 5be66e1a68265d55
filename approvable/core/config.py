from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///approvable.db"
    database_echo: bool = False

    # Logging
    log_level: str = "INFO"
    log_dir: str = "/var/log/approvable"
    file_logging: bool = False

    # Approvals
    approval_config_path: Optional[str] = None
    rollback_bypass_default: bool = True  # rollback() keeps the approval approved unless told otherwise

    model_config = SettingsConfigDict(
        env_prefix="APPROVABLE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
