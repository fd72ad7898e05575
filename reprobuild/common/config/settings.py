from functools import lru_cache
from pathlib import Path
from typing import Optional, List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPROBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON log records")
    log_dir: Optional[str] = Field(default=None)

    work_root: Path = Field(
        default=Path("/tmp/reprobuild"),
        description="Directory under which each run gets its own environment"
    )
    keep_environment: bool = Field(
        default=False,
        description="Keep the run directory after the pipeline finishes"
    )

    download_timeout_seconds: float = Field(default=600.0, gt=0)
    download_retries: int = Field(default=0, ge=0, le=10)
    download_retry_delay_seconds: float = Field(default=2.0, ge=0)
    download_chunk_size: int = Field(default=65536, ge=1024)

    passthrough_env_vars: List[str] = Field(
        default=["HOME", "LANG", "LC_ALL", "TMPDIR", "USER", "PATH"]
    )

    default_recipe: str = Field(default="ruffle-web")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @field_validator("passthrough_env_vars")
    @classmethod
    def validate_passthrough(cls, v: List[str]) -> List[str]:
        for name in v:
            if not name or "=" in name:
                raise ValueError(f"Invalid environment variable name: {name!r}")
        return v


@lru_cache()
def get_settings() -> Settings:
    return Settings()
