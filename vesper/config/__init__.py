"""Configuration and logging setup."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
