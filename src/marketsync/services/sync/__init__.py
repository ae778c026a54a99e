"""Sync service: trigger, status and market search endpoints."""

from .app import build_app

__all__ = ["build_app"]
