from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    log_dir: str = Field(default="data", alias="LOG_DIR")
    log_filename: str = Field(default="debug-memory.log", alias="LOG_FILENAME")
    memory_limit: str = Field(default="256M", alias="MEMORY_LIMIT")
    capture_mode: Literal["admin", "all", "off"] = Field(default="admin", alias="CAPTURE_MODE")
    capture_exclude_paths: str = Field(default="/health", alias="CAPTURE_EXCLUDE_PATHS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    enable_metrics_endpoint: bool = Field(default=True, alias="ENABLE_METRICS_ENDPOINT")

    database_url: str = Field(default="sqlite:///./memlog.db", alias="DATABASE_URL")
    jwt_secret: str = Field(default="change-me", alias="JWT_SECRET")
    jwt_cookie_name: str = Field(default="memlog_session", alias="JWT_COOKIE_NAME")
    jwt_exp_minutes: int = Field(default=60 * 24 * 7, alias="JWT_EXP_MINUTES")
    nonce_ttl_minutes: int = Field(default=60 * 12, alias="NONCE_TTL_MINUTES")

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir) / self.log_filename

    @property
    def excluded_capture_paths(self) -> set[str]:
        return {p.strip() for p in self.capture_exclude_paths.split(",") if p.strip()}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
