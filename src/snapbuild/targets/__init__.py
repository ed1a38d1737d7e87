"""Build target models and loader exports."""

from .loader import BuildTarget, TargetLoadError, TargetLoader, load_targets
from .models import DEFAULT_TARGETS

__all__ = [
    "BuildTarget",
    "DEFAULT_TARGETS",
    "TargetLoadError",
    "TargetLoader",
    "load_targets",
]
