"""Node taint manager background processing."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

import uvicorn
from aiojobs import Job, Scheduler
from fastapi import FastAPI
from safir.datetime import current_datetime
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .exceptions import CacheSyncError
from .services.cache import ResourceCache
from .services.reconciler import TaintReconciler

__all__ = ["BackgroundTaskManager"]

_SERVER_SHUTDOWN_TIMEOUT = 5.0
"""Seconds to wait for the metrics server to shut down cleanly."""


class BackgroundTaskManager:
    """Manage node taint manager background tasks.

    While the node taint manager is running, it performs several continuous
    or periodic background tasks:

    #. Keep the node cache current with a list and watch loop.
    #. Keep the pod cache current with a list and watch loop.
    #. Periodically reconcile every cached node.
    #. Reconcile nodes as soon as they change, if enabled.
    #. Serve Prometheus metrics, if enabled.

    This class only does the task management. All of the work is done by
    methods on the underlying service objects.

    Parameters
    ----------
    cache
        Local view of nodes and pods.
    reconciler
        Reconciliation service.
    reconcile_interval
        How frequently to reconcile every node.
    reconcile_on_change
        Whether to reconcile nodes as soon as they change. If set, the
        periodic pass queues every node for the change worker instead of
        reconciling it directly.
    metrics_app
        Application serving metrics, or `None` to not serve metrics.
    metrics_port
        Port on which to serve metrics.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        cache: ResourceCache,
        reconciler: TaintReconciler,
        reconcile_interval: timedelta,
        reconcile_on_change: bool,
        metrics_app: FastAPI | None,
        metrics_port: int,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._cache = cache
        self._reconciler = reconciler
        self._reconcile_interval = reconcile_interval
        self._reconcile_on_change = reconcile_on_change
        self._metrics_app = metrics_app
        self._metrics_port = metrics_port
        self._slack = slack_client
        self._logger = logger

        self._scheduler: Scheduler | None = None
        self._server: uvicorn.Server | None = None
        self._server_job: Job[None] | None = None

    async def start(self, sync_timeout: timedelta) -> None:
        """Start all background tasks.

        The cache loops are started first. Reconciliation only starts once
        the cache has seen every node and pod at least once, since
        reconciling against a partial view could remove a taint whose
        daemon pods have not been seen yet.

        Parameters
        ----------
        sync_timeout
            How long to wait for the initial cache sync.

        Raises
        ------
        CacheSyncError
            Raised if the cache did not sync in time. The cache loops are
            left running and must be stopped with `stop`.
        """
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()

        self._logger.info("Starting resource cache")
        await self._scheduler.spawn(self._cache.run_nodes())
        await self._scheduler.spawn(self._cache.run_pods())
        if not await self._cache.wait_until_synced(sync_timeout):
            timeout = sync_timeout.total_seconds()
            msg = f"Resource cache did not sync within {timeout}s"
            raise CacheSyncError(msg)

        self._logger.info("Starting background tasks")
        if self._reconcile_on_change:
            await self._scheduler.spawn(self._reconciler.process_changes())
            periodic = self._enqueue_all
        else:
            periodic = self._reconcile_all
        await self._scheduler.spawn(
            self._loop(
                periodic, self._reconcile_interval, "reconciling node taints"
            )
        )
        if self._metrics_app:
            self._server = self._build_server(self._metrics_app)
            self._server_job = await self._scheduler.spawn(
                self._server.serve()
            )

    async def stop(self) -> None:
        """Stop the background tasks."""
        if not self._scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        if self._server and self._server_job:
            self._server.should_exit = True
            try:
                await self._server_job.wait(timeout=_SERVER_SHUTDOWN_TIMEOUT)
            except TimeoutError:
                self._logger.warning("Metrics server did not shut down")
        await self._scheduler.close()
        self._scheduler = None
        self._server = None
        self._server_job = None

    def _build_server(self, app: FastAPI) -> uvicorn.Server:
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self._metrics_port,
            access_log=False,
            log_config=None,
            lifespan="off",
        )
        self._logger.info("Serving metrics", port=self._metrics_port)
        return uvicorn.Server(config)

    async def _enqueue_all(self) -> None:
        self._reconciler.enqueue_all()

    async def _reconcile_all(self) -> None:
        await self._reconciler.reconcile()

    async def _loop(
        self,
        call: Callable[[], Awaitable[None]],
        interval: timedelta,
        description: str,
    ) -> None:
        """Wrap a coroutine in a periodic scheduling loop.

        The provided coroutine is run on every interval, starting
        immediately.

        Parameters
        ----------
        call
            Async function to run repeatedly.
        interval
            Scheduling interval to use.
        description
            Description of the background task for error reporting.
        """
        while True:
            start = current_datetime(microseconds=True)
            try:
                await call()
            except Exception as e:
                # On failure, log the exception but otherwise continue as
                # normal, including the delay.
                elapsed = current_datetime(microseconds=True) - start
                msg = f"Uncaught exception {description}"
                self._logger.exception(msg, delay=elapsed.total_seconds())
                if self._slack:
                    await self._slack.post_uncaught_exception(e)
            delay = interval - (current_datetime(microseconds=True) - start)
            if delay.total_seconds() <= 0:
                msg = f"{description.capitalize()} is running continuously"
                self._logger.warning(msg)
                await asyncio.sleep(0)
            else:
                await asyncio.sleep(delay.total_seconds())
