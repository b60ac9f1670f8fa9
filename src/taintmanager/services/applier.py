"""Removal of gating taints from a single node."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from enum import Enum
from typing import Protocol

from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..exceptions import NodePatchConflictError
from ..metrics import TaintMetrics
from ..models.domain.kubernetes import NodeSnapshot, PodSnapshot
from ..models.domain.patch import PatchOperation
from .builder import TaintPatchBuilder
from .eligibility import TaintEvaluator

__all__ = ["NodePatcher", "PatchOutcome", "PodLookup", "TaintPatchApplier"]


class PatchOutcome(Enum):
    """Result of trying to remove gating taints from a node."""

    UNTAINTED = "untainted"
    NOT_TAINTED = "not_tainted"
    NOT_READY = "not_ready"
    NODE_MISSING = "node_missing"
    RETRIES_EXHAUSTED = "retries_exhausted"


class PodLookup(Protocol):
    """Source of the pods bound to a node."""

    def list_pods_by_node(self, node_name: str) -> list[PodSnapshot]: ...


class NodePatcher(Protocol):
    """Authoritative store of nodes."""

    async def patch(
        self, name: str, operations: list[PatchOperation]
    ) -> None: ...

    async def read(self, name: str) -> NodeSnapshot | None: ...


class TaintPatchApplier:
    """Remove gating taints from a node once its daemons are ready.

    The decision and the patch form a read-decide-write cycle. If the API
    server rejects the patch because the node changed after the snapshot was
    taken, the node is read again and the whole cycle is repeated against
    the fresh snapshot, up to a fixed number of attempts. Running out of
    attempts is not an error; the node is picked up again by the next
    reconciliation pass.

    Parameters
    ----------
    pods
        Source of the pods bound to each node, normally the resource cache.
    node_storage
        Storage used to patch nodes and to read fresh snapshots.
    evaluator
        Decides which taints are removable.
    builder
        Builds the patch removing them.
    metrics
        Metrics to update after each successful removal.
    attempts
        Maximum number of patch attempts per call.
    retry_delay
        Delay after the first failed attempt. The delay grows linearly with
        each further attempt.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        pods: PodLookup,
        node_storage: NodePatcher,
        evaluator: TaintEvaluator,
        builder: TaintPatchBuilder,
        metrics: TaintMetrics,
        attempts: int,
        retry_delay: timedelta,
        logger: BoundLogger,
    ) -> None:
        if attempts < 1:
            raise ValueError("Must make at least one patch attempt")
        self._pods = pods
        self._node_storage = node_storage
        self._evaluator = evaluator
        self._builder = builder
        self._metrics = metrics
        self._attempts = attempts
        self._retry_delay = retry_delay
        self._logger = logger

    async def apply(self, node: NodeSnapshot) -> PatchOutcome:
        """Remove any gating taints of a node whose daemons are ready.

        Parameters
        ----------
        node
            Snapshot of the node to start from.

        Returns
        -------
        PatchOutcome
            What happened.

        Raises
        ------
        KubernetesError
            Raised if a Kubernetes API call fails for a reason other than a
            conflicting change to the node.
        """
        logger = self._logger.bind(node=node.name)
        for attempt in range(1, self._attempts + 1):
            pods = self._pods.list_pods_by_node(node.name)
            evaluation = self._evaluator.evaluate(node, pods)
            if not evaluation.is_gated:
                return PatchOutcome.NOT_TAINTED
            if not evaluation.removable:
                waiting = {
                    str(k): v for k, v in evaluation.waiting.items()
                }
                logger.debug("Node not ready", waiting=waiting)
                return PatchOutcome.NOT_READY

            # Measure before patching so that a slow API server does not
            # inflate the time to ready.
            elapsed = None
            if node.creation_timestamp:
                now = current_datetime(microseconds=True)
                elapsed = (now - node.creation_timestamp).total_seconds()

            patch = self._builder.build(node, evaluation.removable)
            try:
                await self._node_storage.patch(node.name, patch)
            except NodePatchConflictError as e:
                logger.debug(
                    "Node changed, retrying",
                    attempt=attempt,
                    error=str(e),
                )
                if attempt == self._attempts:
                    break
                delay = self._retry_delay * attempt
                await asyncio.sleep(delay.total_seconds())
                fresh = await self._node_storage.read(node.name)
                if fresh is None:
                    logger.info("Node disappeared before it was untainted")
                    return PatchOutcome.NODE_MISSING
                node = fresh
                continue

            removed = [node.taints[i].value for i in evaluation.removable]
            logger.info(
                "Removed gating taints from node",
                taint_key=self._evaluator.taint_key,
                taint_values=removed,
                remaining=len(evaluation.waiting),
                elapsed=elapsed,
            )
            self._metrics.record_untaint(elapsed)
            return PatchOutcome.UNTAINTED

        logger.warning(
            "Unable to remove gating taints, will retry on next pass",
            attempts=self._attempts,
        )
        return PatchOutcome.RETRIES_EXHAUSTED
