"""JSON control surface over FastAPI."""

from oracle_watch.api.app import create_app

__all__ = ["create_app"]
