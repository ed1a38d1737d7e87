"""Configuration management for snapbuild."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class SnapbuildSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    upstream_owner: str = Field(default="NixOS", validation_alias="SNAPBUILD_UPSTREAM_OWNER")
    upstream_repo: str = Field(default="nixpkgs", validation_alias="SNAPBUILD_UPSTREAM_REPO")
    upstream_ref: str = Field(default="main", validation_alias="SNAPBUILD_UPSTREAM_REF")
    github_token: str | None = Field(default=None, validation_alias="GITHUB_TOKEN")
    github_api_url: str = Field(
        default="https://api.github.com", validation_alias="SNAPBUILD_GITHUB_API_URL"
    )

    rebuild_threshold: int = Field(default=10, validation_alias="SNAPBUILD_REBUILD_THRESHOLD")
    poll_interval_seconds: float = Field(default=60.0, validation_alias="SNAPBUILD_POLL_INTERVAL")
    retry_base_seconds: float = Field(default=5.0, validation_alias="SNAPBUILD_RETRY_BASE")
    retry_max_seconds: float = Field(default=300.0, validation_alias="SNAPBUILD_RETRY_MAX")
    max_consecutive_failures: int | None = Field(
        default=None, validation_alias="SNAPBUILD_MAX_POLL_FAILURES"
    )

    work_dir: Path = Field(default=Path("./builds"), validation_alias="SNAPBUILD_WORK_DIR")
    build_tool: str = Field(default="nix-build-target", validation_alias="SNAPBUILD_BUILD_TOOL")
    build_timeout_seconds: float | None = Field(
        default=3600.0, validation_alias="SNAPBUILD_BUILD_TIMEOUT"
    )
    target_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("targets"),), validation_alias="SNAPBUILD_TARGET_PATHS"
    )

    host: str = Field(default="127.0.0.1", validation_alias="SNAPBUILD_HOST")
    port: int = Field(default=8000, validation_alias="SNAPBUILD_PORT")
    log_level: str = Field(default="INFO", validation_alias="SNAPBUILD_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SNAPBUILD_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("target_paths", mode="before")
    @classmethod
    def _parse_target_paths(cls, value):
        if value is None or value == "":
            return (Path("targets"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("targets"),)
        raise TypeError("SNAPBUILD_TARGET_PATHS must be a list of paths or a path-separated string")

    @field_validator("rebuild_threshold")
    @classmethod
    def _validate_threshold(cls, value: int) -> int:
        if value < 0:
            raise ValueError("SNAPBUILD_REBUILD_THRESHOLD must be >= 0")
        return value

    @field_validator("poll_interval_seconds", "retry_base_seconds", "retry_max_seconds")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("poll and retry intervals must be > 0")
        return value

    @field_validator("build_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    @field_validator("max_consecutive_failures")
    @classmethod
    def _validate_max_failures(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("SNAPBUILD_MAX_POLL_FAILURES must be >= 1")
        return value

    @model_validator(mode="after")
    def _validate_retry_window(self) -> "SnapbuildSettings":
        if self.retry_max_seconds < self.retry_base_seconds:
            raise ValueError("SNAPBUILD_RETRY_MAX must be >= SNAPBUILD_RETRY_BASE")
        return self


@lru_cache(maxsize=1)
def get_settings() -> SnapbuildSettings:
    """Return cached settings instance."""

    settings = SnapbuildSettings()
    settings.work_dir = settings.work_dir.expanduser().resolve()
    settings.target_paths = tuple(path.expanduser().resolve() for path in settings.target_paths)
    return settings


__all__ = ["SnapbuildSettings", "get_settings"]
