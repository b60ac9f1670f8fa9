"""The application factory for the metrics endpoint."""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from . import __version__
from .constants import APPLICATION_NAME
from .handlers import index
from .metrics import TaintMetrics

__all__ = ["create_app"]


def create_app(metrics: TaintMetrics) -> FastAPI:
    """Create the FastAPI application serving metrics.

    The application has no lifespan of its own. It is run by the background
    task manager next to the reconciliation tasks, which own all of the
    state it exposes.

    Parameters
    ----------
    metrics
        Metrics to serve at ``/metrics``.
    """
    app = FastAPI(
        title=APPLICATION_NAME,
        version=__version__,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.include_router(index.internal_router)
    app.mount("/metrics", make_asgi_app(registry=metrics.registry))
    return app
