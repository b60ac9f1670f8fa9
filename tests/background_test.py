"""Tests for background task management."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from structlog.stdlib import BoundLogger

from taintmanager.background import BackgroundTaskManager
from taintmanager.exceptions import CacheSyncError
from taintmanager.metrics import TaintMetrics
from taintmanager.models.domain.kubernetes import WatchEventType
from taintmanager.services.applier import TaintPatchApplier
from taintmanager.services.builder import TaintPatchBuilder
from taintmanager.services.cache import ResourceCache
from taintmanager.services.eligibility import TaintEvaluator
from taintmanager.services.queue import NodeChangeQueue
from taintmanager.services.reconciler import TaintReconciler

from .support.kubernetes import (
    GATE,
    FakeNodeStorage,
    FakePodStorage,
    make_node,
    make_pod,
)


def build_manager(
    node_storage: FakeNodeStorage,
    pod_storage: FakePodStorage,
    metrics: TaintMetrics,
    logger: BoundLogger,
    *,
    reconcile_on_change: bool,
) -> BackgroundTaskManager:
    queue = NodeChangeQueue() if reconcile_on_change else None
    cache = ResourceCache(
        node_storage=node_storage,
        pod_storage=pod_storage,
        resync_interval=timedelta(minutes=10),
        changes=queue,
        logger=logger,
    )
    applier = TaintPatchApplier(
        pods=cache,
        node_storage=node_storage,
        evaluator=TaintEvaluator(GATE),
        builder=TaintPatchBuilder(),
        metrics=metrics,
        attempts=3,
        retry_delay=timedelta(0),
        logger=logger,
    )
    reconciler = TaintReconciler(
        cache=cache,
        applier=applier,
        metrics=metrics,
        queue=queue,
        logger=logger,
    )
    return BackgroundTaskManager(
        cache=cache,
        reconciler=reconciler,
        reconcile_interval=timedelta(milliseconds=50),
        reconcile_on_change=reconcile_on_change,
        metrics_app=None,
        metrics_port=9090,
        slack_client=None,
        logger=logger,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("reconcile_on_change", [True, False])
async def test_untaint(
    metrics: TaintMetrics, logger: BoundLogger, reconcile_on_change: bool
) -> None:
    node_storage = FakeNodeStorage([make_node("n1", [(GATE, "")])])
    pod_storage = FakePodStorage([make_pod("agent", "n1", ready=False)])
    manager = build_manager(
        node_storage,
        pod_storage,
        metrics,
        logger,
        reconcile_on_change=reconcile_on_change,
    )

    await manager.start(timedelta(seconds=5))
    try:
        await asyncio.sleep(0.1)
        assert node_storage.patches == []
        assert node_storage.nodes["n1"].taints != ()

        # Readiness of the daemon arrives through the watch.
        pod_storage.send(WatchEventType.MODIFIED, make_pod("agent", "n1"))
        for _ in range(100):
            if node_storage.nodes["n1"].taints == ():
                break
            await asyncio.sleep(0.01)
        assert node_storage.nodes["n1"].taints == ()
        untainted = "node_taint_manager_nodes_untainted_total"
        assert metrics.registry.get_sample_value(untainted) == 1
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_sync_timeout(
    metrics: TaintMetrics, logger: BoundLogger
) -> None:
    node_storage = FakeNodeStorage()
    node_storage.fail_lists = 1000
    manager = build_manager(
        node_storage,
        FakePodStorage(),
        metrics,
        logger,
        reconcile_on_change=True,
    )

    with pytest.raises(CacheSyncError):
        await manager.start(timedelta(milliseconds=50))
    await manager.stop()


@pytest.mark.asyncio
async def test_stop_twice(metrics: TaintMetrics, logger: BoundLogger) -> None:
    manager = build_manager(
        FakeNodeStorage(),
        FakePodStorage(),
        metrics,
        logger,
        reconcile_on_change=False,
    )
    await manager.start(timedelta(seconds=5))
    await manager.stop()
    await manager.stop()
