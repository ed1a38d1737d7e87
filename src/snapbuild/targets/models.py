"""Build target models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class BuildTarget(BaseModel):
    """One named build configuration the system can produce output for."""

    id: str = Field(..., description="Target identifier passed to the build tool.")
    description: str = Field(default="", description="Human-friendly description of the target.")
    build_flags: list[str] = Field(
        default_factory=list,
        description="Extra flags placed before the input path when invoking the build tool.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata surfaced in status reports.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Build target id must not be empty")
        if "/" in normalized or normalized in {".", ".."}:
            raise ValueError(f"Build target id '{normalized}' is not a valid directory name")
        return normalized

    @field_validator("build_flags", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise TypeError("build_flags must be a sequence of strings")


DEFAULT_TARGETS: tuple[BuildTarget, ...] = (
    BuildTarget(id="x86_64-linux", description="64-bit x86 Linux"),
    BuildTarget(id="aarch64-linux", description="64-bit ARM Linux"),
    BuildTarget(id="x86_64-darwin", description="64-bit x86 macOS"),
)


__all__ = ["BuildTarget", "DEFAULT_TARGETS"]
