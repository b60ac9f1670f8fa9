"""Reconciliation of gating taints across all nodes."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ..metrics import TaintMetrics
from ..models.domain.kubernetes import NodeSnapshot
from .applier import PatchOutcome, TaintPatchApplier
from .cache import ResourceCache
from .queue import NodeChangeQueue

__all__ = ["TaintReconciler"]


class TaintReconciler:
    """Drive taint removal for every node in the cache.

    Nodes are reconciled in two ways: a periodic pass over every cached node,
    and, if a change queue is provided, one node at a time as soon as the
    node or one of its pods changes. Both paths go through the same applier,
    and reconciling a node that has no removable taints does nothing, so it
    is safe for them to overlap.

    Parameters
    ----------
    cache
        Local view of nodes and pods.
    applier
        Removes gating taints from a single node.
    metrics
        Metrics to update on each pass.
    queue
        Names of nodes that changed since they were last reconciled.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        cache: ResourceCache,
        applier: TaintPatchApplier,
        metrics: TaintMetrics,
        queue: NodeChangeQueue | None = None,
        logger: BoundLogger,
    ) -> None:
        self._cache = cache
        self._applier = applier
        self._metrics = metrics
        self._queue = queue
        self._logger = logger

    async def reconcile(self) -> dict[str, PatchOutcome]:
        """Reconcile every cached node once.

        A failure to reconcile one node is logged and does not stop the
        pass.

        Returns
        -------
        dict of PatchOutcome
            Outcome for each node that was reconciled without error, keyed
            by node name.
        """
        nodes = self._cache.list_nodes()
        self._metrics.set_nodes_monitored(len(nodes))
        outcomes = {}
        for node in nodes:
            outcome = await self._reconcile_one(node)
            if outcome:
                outcomes[node.name] = outcome
        untainted = sum(
            1 for o in outcomes.values() if o == PatchOutcome.UNTAINTED
        )
        if untainted:
            self._logger.debug(
                "Reconciliation pass complete",
                nodes=len(nodes),
                untainted=untainted,
            )
        return outcomes

    async def reconcile_node(self, name: str) -> PatchOutcome | None:
        """Reconcile a single node by name.

        Parameters
        ----------
        name
            Name of the node.

        Returns
        -------
        PatchOutcome or None
            Outcome of reconciling the node, or `None` if it is not in the
            cache or reconciliation failed.
        """
        node = self._cache.get_node(name)
        if node is None:
            return None
        return await self._reconcile_one(node)

    def enqueue_all(self) -> None:
        """Queue every cached node for reconciliation by the change worker.

        Used as the periodic backstop when reconciliation is driven by
        changes, so that a node is never evaluated by two tasks at once.
        """
        if self._queue is None:
            raise RuntimeError("No change queue configured")
        nodes = self._cache.list_nodes()
        self._metrics.set_nodes_monitored(len(nodes))
        self._queue.put_all(n.name for n in nodes)

    async def process_changes(self) -> None:
        """Reconcile changed nodes as they are queued, until cancelled."""
        if self._queue is None:
            raise RuntimeError("No change queue configured")
        while True:
            name = await self._queue.get()
            await self.reconcile_node(name)

    async def _reconcile_one(self, node: NodeSnapshot) -> PatchOutcome | None:
        try:
            return await self._applier.apply(node)
        except Exception:
            self._logger.exception("Failed to reconcile node", node=node.name)
            return None
