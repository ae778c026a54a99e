"""Configuration management for the market sync engine."""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
