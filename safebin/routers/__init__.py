from . import health, trash  # noqa: F401

__all__ = ["health", "trash"]
