"""Admin HTTP API for the scheduler."""

from fetchbeat.api.app import create_app

__all__ = ["create_app"]
