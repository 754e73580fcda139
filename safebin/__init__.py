"""Reversible file deletion backed by a platform trash directory."""

__version__ = "0.1.0"
