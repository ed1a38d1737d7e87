"""Target loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import DEFAULT_TARGETS, BuildTarget


class TargetLoadError(RuntimeError):
    """Raised when one or more target files cannot be parsed."""


class TargetLoader:
    """Loads build targets from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load_all(self) -> dict[str, BuildTarget]:
        """Load targets from all configured search paths.

        Later search paths override earlier ones when target ids collide. When no
        target files are found the built-in defaults are returned.
        """

        targets: dict[str, BuildTarget] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                # A file may hold one target mapping or a list of them.
                documents = document if isinstance(document, list) else [document]
                for item in documents:
                    try:
                        target = BuildTarget.model_validate(item)
                    except ValidationError as exc:
                        errors.append(f"Target validation error in {path}: {exc}")
                        continue
                    targets[target.id] = target

        if errors:
            raise TargetLoadError("; ".join(errors))

        if not targets:
            return {target.id: target for target in DEFAULT_TARGETS}

        return targets

    def get(self, target_id: str) -> BuildTarget:
        """Return a single target by id."""

        targets = self.load_all()
        try:
            return targets[target_id]
        except KeyError as exc:
            raise TargetLoadError(f"Target '{target_id}' not found in search paths") from exc


def load_targets(search_paths: Iterable[Path] | None = None) -> dict[str, BuildTarget]:
    """Convenience wrapper for loading targets from the provided paths."""

    loader = TargetLoader(search_paths)
    return loader.load_all()


__all__ = ["BuildTarget", "TargetLoadError", "TargetLoader", "load_targets"]
