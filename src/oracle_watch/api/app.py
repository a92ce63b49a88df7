"""FastAPI application factory for the JSON control surface."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from oracle_watch.api import routes


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the control-surface application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        FastAPI application with routes mounted under /api. Components are
        attached to ``app.state`` by the caller: rule_engine, health_checker,
        anomaly_detector, price_monitor, monitor_store.
    """
    app = FastAPI(title="Oracle Watch", lifespan=lifespan)

    app.state.rule_engine = None
    app.state.health_checker = None
    app.state.anomaly_detector = None
    app.state.price_monitor = None
    app.state.monitor_store = None

    app.include_router(routes.router, prefix="/api")

    return app
