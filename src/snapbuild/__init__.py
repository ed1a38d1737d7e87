"""snapbuild: rebuild a fixed set of targets from upstream snapshots and serve the artifacts."""

__version__ = "0.1.0"

__all__ = ["__version__"]
