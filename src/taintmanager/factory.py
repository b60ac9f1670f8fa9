"""Component factory and process-wide context management."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Self

import structlog
from kubernetes_asyncio.client.api_client import ApiClient
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config
from .main import create_app
from .metrics import TaintMetrics
from .services.applier import TaintPatchApplier
from .services.builder import TaintPatchBuilder
from .services.cache import ResourceCache
from .services.eligibility import TaintEvaluator
from .services.queue import NodeChangeQueue
from .services.reconciler import TaintReconciler
from .storage.kubernetes.node import NodeStorage
from .storage.kubernetes.pod import PodStorage

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds all of the per-process singletons. It is used by the
    `Factory` class as a source of dependencies to inject into created
    service and storage objects.
    """

    config: Config
    """Node taint manager configuration."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    metrics: TaintMetrics
    """Prometheus metrics."""

    queue: NodeChangeQueue | None
    """Nodes waiting to be reconciled, if reconciling on change."""

    cache: ResourceCache
    """Local view of nodes and pods."""

    slack_client: SlackWebhookClient | None
    """Optional Slack webhook client for alerts."""

    @classmethod
    def from_config(
        cls,
        config: Config,
        kubernetes_client: ApiClient | None = None,
        slack_client: SlackWebhookClient | None = None,
    ) -> Self:
        """Create a new process context from the configuration.

        Parameters
        ----------
        config
            Node taint manager configuration.
        kubernetes_client
            Kubernetes client to use. A new one is created from the global
            Kubernetes configuration if not given.
        slack_client
            Slack webhook client for alerts, if alerting is configured.

        Returns
        -------
        ProcessContext
            Shared context for a node taint manager process.
        """
        kubernetes_client = kubernetes_client or ApiClient()
        logger = structlog.get_logger(__name__)

        queue = NodeChangeQueue() if config.reconcile_on_change else None
        cache = ResourceCache(
            node_storage=NodeStorage(kubernetes_client, logger),
            pod_storage=PodStorage(kubernetes_client, logger),
            resync_interval=config.resync_interval,
            changes=queue,
            logger=logger,
        )
        return cls(
            config=config,
            kubernetes_client=kubernetes_client,
            metrics=TaintMetrics(),
            queue=queue,
            cache=cache,
            slack_client=slack_client,
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.kubernetes_client.close()


class Factory:
    """Build node taint manager components.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use. Defaults to the logger for this module.
    """

    def __init__(
        self, context: ProcessContext, logger: BoundLogger | None = None
    ) -> None:
        self._context = context
        self._logger = logger or structlog.get_logger(__name__)

    def create_applier(self) -> TaintPatchApplier:
        """Create a new service to remove gating taints from one node."""
        config = self._context.config
        return TaintPatchApplier(
            pods=self._context.cache,
            node_storage=self.create_node_storage(),
            evaluator=TaintEvaluator(config.taint_key),
            builder=TaintPatchBuilder(),
            metrics=self._context.metrics,
            attempts=config.patch_attempts,
            retry_delay=config.patch_retry_delay,
            logger=self._logger,
        )

    def create_background_task_manager(self) -> BackgroundTaskManager:
        """Create a new manager for the background tasks."""
        config = self._context.config
        metrics_app = None
        if config.metrics_enabled:
            metrics_app = create_app(self._context.metrics)
        return BackgroundTaskManager(
            cache=self._context.cache,
            reconciler=self.create_reconciler(),
            reconcile_interval=config.reconcile_interval,
            reconcile_on_change=config.reconcile_on_change,
            metrics_app=metrics_app,
            metrics_port=config.metrics_port,
            slack_client=self._context.slack_client,
            logger=self._logger,
        )

    def create_node_storage(self) -> NodeStorage:
        """Create a new storage client for nodes."""
        return NodeStorage(self._context.kubernetes_client, self._logger)

    def create_reconciler(self) -> TaintReconciler:
        """Create a new reconciliation service."""
        return TaintReconciler(
            cache=self._context.cache,
            applier=self.create_applier(),
            metrics=self._context.metrics,
            queue=self._context.queue,
            logger=self._logger,
        )
