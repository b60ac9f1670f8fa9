"""Tests for the local cache of nodes and pods."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest
from structlog.stdlib import BoundLogger

from taintmanager.models.domain.kubernetes import WatchEventType
from taintmanager.services.cache import ResourceCache
from taintmanager.services.queue import NodeChangeQueue
from taintmanager.storage.kubernetes.watcher import WatchEvent

from ..support.kubernetes import (
    GATE,
    FakeNodeStorage,
    FakePodStorage,
    make_node,
    make_pod,
)


def build_cache(
    logger: BoundLogger,
    node_storage: FakeNodeStorage | None = None,
    pod_storage: FakePodStorage | None = None,
    changes: NodeChangeQueue | None = None,
) -> ResourceCache:
    return ResourceCache(
        node_storage=node_storage or FakeNodeStorage(),
        pod_storage=pod_storage or FakePodStorage(),
        resync_interval=timedelta(minutes=10),
        changes=changes,
        logger=logger,
    )


async def drain(queue: NodeChangeQueue) -> set[str]:
    names = set()
    while len(queue):
        names.add(await queue.get())
    return names


@pytest.mark.asyncio
async def test_replace_and_update_nodes(logger: BoundLogger) -> None:
    changes = NodeChangeQueue()
    cache = build_cache(logger, changes=changes)
    n1 = make_node("n1", [(GATE, "")])
    n2 = make_node("n2")

    cache.replace_nodes([n1, n2])
    assert sorted(n.name for n in cache.list_nodes()) == ["n1", "n2"]
    assert cache.get_node("n1") == n1
    assert await drain(changes) == {"n1", "n2"}

    # A relist only reports nodes that changed.
    n1_new = make_node("n1", resource_version="2")
    cache.replace_nodes([n1_new, n2])
    assert await drain(changes) == {"n1"}

    cache.update_node(WatchEvent(action=WatchEventType.MODIFIED, object=n2))
    assert await drain(changes) == {"n2"}

    cache.update_node(WatchEvent(action=WatchEventType.DELETED, object=n2))
    assert cache.get_node("n2") is None
    assert len(changes) == 0


@pytest.mark.asyncio
async def test_pods_by_node(logger: BoundLogger) -> None:
    changes = NodeChangeQueue()
    cache = build_cache(logger, changes=changes)
    agent = make_pod("agent", "n1")
    logger_pod = make_pod("logger", "n1")
    other = make_pod("other", "n2")

    cache.replace_pods([logger_pod, other, agent])
    assert cache.list_pods_by_node("n1") == [agent, logger_pod]
    assert cache.list_pods_by_node("n2") == [other]
    assert cache.list_pods_by_node("n3") == []
    assert await drain(changes) == {"n1", "n2"}

    # A pod moving to another node affects both nodes.
    moved = replace(other, node_name="n3")
    cache.update_pod(WatchEvent(action=WatchEventType.MODIFIED, object=moved))
    assert cache.list_pods_by_node("n2") == []
    assert cache.list_pods_by_node("n3") == [moved]
    assert await drain(changes) == {"n2", "n3"}

    unready = replace(agent, ready=False)
    cache.update_pod(
        WatchEvent(action=WatchEventType.MODIFIED, object=unready)
    )
    assert cache.list_pods_by_node("n1") == [unready, logger_pod]
    assert await drain(changes) == {"n1"}

    cache.update_pod(
        WatchEvent(action=WatchEventType.DELETED, object=logger_pod)
    )
    assert cache.list_pods_by_node("n1") == [unready]
    assert await drain(changes) == {"n1"}


@pytest.mark.asyncio
async def test_replace_pods_reports_removed(logger: BoundLogger) -> None:
    changes = NodeChangeQueue()
    cache = build_cache(logger, changes=changes)
    agent = make_pod("agent", "n1")
    cache.replace_pods([agent, make_pod("other", "n2")])
    await drain(changes)

    # A relist where a pod vanished or moved reports its old node.
    cache.replace_pods([replace(agent, node_name="n3")])
    assert cache.list_pods_by_node("n1") == []
    assert cache.list_pods_by_node("n2") == []
    assert await drain(changes) == {"n1", "n2", "n3"}


@pytest.mark.asyncio
async def test_wait_until_synced(logger: BoundLogger) -> None:
    node_storage = FakeNodeStorage([make_node("n1", [(GATE, "")])])
    pod_storage = FakePodStorage([make_pod("agent", "n1")])
    cache = build_cache(logger, node_storage, pod_storage)
    assert not cache.is_synced

    nodes = asyncio.create_task(cache.run_nodes())
    pods = asyncio.create_task(cache.run_pods())
    try:
        assert await cache.wait_until_synced(timedelta(seconds=5))
        assert cache.is_synced
        assert [n.name for n in cache.list_nodes()] == ["n1"]
        assert cache.list_pods_by_node("n1") == pod_storage.objects

        # Events from the watch are applied to the cache.
        pod = replace(pod_storage.objects[0], ready=False)
        pod_storage.send(WatchEventType.MODIFIED, pod)
        for _ in range(10):
            await asyncio.sleep(0)
        assert cache.list_pods_by_node("n1") == [pod]

        # When the watch ends, everything is listed again.
        pod_storage.end_watch()
        for _ in range(10):
            await asyncio.sleep(0)
        assert pod_storage.list_calls == 2
        assert cache.list_pods_by_node("n1") == pod_storage.objects
    finally:
        nodes.cancel()
        pods.cancel()
        await asyncio.gather(nodes, pods, return_exceptions=True)


@pytest.mark.asyncio
async def test_wait_until_synced_timeout(logger: BoundLogger) -> None:
    cache = build_cache(logger)
    pods = asyncio.create_task(cache.run_pods())
    try:
        assert not await cache.wait_until_synced(timedelta(milliseconds=50))
        assert not cache.is_synced
    finally:
        pods.cancel()
        await asyncio.gather(pods, return_exceptions=True)


@pytest.mark.asyncio
async def test_list_failure_retried(
    logger: BoundLogger, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        "taintmanager.services.cache.WATCH_RETRY_DELAY", timedelta(0)
    )
    node_storage = FakeNodeStorage([make_node("n1", [(GATE, "")])])
    node_storage.fail_lists = 1
    pod_storage = FakePodStorage()
    cache = build_cache(logger, node_storage, pod_storage)

    tasks = [
        asyncio.create_task(cache.run_nodes()),
        asyncio.create_task(cache.run_pods()),
    ]
    try:
        assert await cache.wait_until_synced(timedelta(seconds=5))
        assert node_storage.list_calls == 2
        assert [n.name for n in cache.list_nodes()] == ["n1"]
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
