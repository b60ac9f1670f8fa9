"""Local cache of node and pod state."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import timedelta
from typing import Protocol

from structlog.stdlib import BoundLogger

from ..constants import WATCH_RETRY_DELAY
from ..exceptions import OperationTimeoutError
from ..models.domain.kubernetes import (
    NodeSnapshot,
    PodSnapshot,
    WatchEventType,
)
from ..storage.kubernetes.watcher import WatchEvent
from ..timeout import Timeout
from .index import PodKey, PodNodeIndex
from .queue import NodeChangeQueue

__all__ = ["ResourceCache", "SnapshotSource"]


class SnapshotSource[T](Protocol):
    """Storage that can list and watch one kind of snapshot."""

    async def list(self) -> tuple[list[T], str | None]: ...

    def watch(
        self, resource_version: str | None, timeout: timedelta
    ) -> AsyncIterator[WatchEvent[T]]: ...


class ResourceCache:
    """Eventually-consistent local view of nodes and pods.

    Each kind is kept current by a loop that lists all objects, replaces the
    cached copies, and then watches for changes from the resource version of
    the list. The watch is opened with a timeout of the resync interval, so
    every resync interval the objects are listed again from scratch, which
    corrects any drift.

    All updates to the pod store and the pod-by-node index happen together
    without yielding to the event loop, so readers never see one without the
    other.

    Parameters
    ----------
    node_storage
        Source of node snapshots.
    pod_storage
        Source of pod snapshots.
    resync_interval
        How frequently to list all objects again.
    changes
        If given, the name of every node that may need reconciliation
        because it or one of its pods changed is added to this queue.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        node_storage: SnapshotSource[NodeSnapshot],
        pod_storage: SnapshotSource[PodSnapshot],
        resync_interval: timedelta,
        changes: NodeChangeQueue | None = None,
        logger: BoundLogger,
    ) -> None:
        self._node_storage = node_storage
        self._pod_storage = pod_storage
        self._resync_interval = resync_interval
        self._changes = changes
        self._logger = logger

        self._nodes: dict[str, NodeSnapshot] = {}
        self._pods: dict[PodKey, PodSnapshot] = {}
        self._index = PodNodeIndex()
        self._nodes_synced = asyncio.Event()
        self._pods_synced = asyncio.Event()

    @property
    def is_synced(self) -> bool:
        """Whether both nodes and pods have been listed at least once."""
        return self._nodes_synced.is_set() and self._pods_synced.is_set()

    def get_node(self, name: str) -> NodeSnapshot | None:
        """Return the cached snapshot of a node, if any."""
        return self._nodes.get(name)

    def list_nodes(self) -> list[NodeSnapshot]:
        """Return snapshots of all cached nodes."""
        return list(self._nodes.values())

    def list_pods_by_node(self, node_name: str) -> list[PodSnapshot]:
        """Return snapshots of all cached pods bound to a node.

        Parameters
        ----------
        node_name
            Name of the node.

        Returns
        -------
        list of PodSnapshot
            Pods on that node sorted by namespace and name, empty if there
            are none.
        """
        keys = sorted(self._index.lookup(node_name))
        return [self._pods[k] for k in keys]

    async def wait_until_synced(self, timeout: timedelta) -> bool:
        """Wait for the initial list of nodes and pods to complete.

        Parameters
        ----------
        timeout
            How long to wait.

        Returns
        -------
        bool
            `True` if the cache synced, `False` if the timeout expired first.
        """
        try:
            async with Timeout("Resource cache sync", timeout).enforce():
                await self._nodes_synced.wait()
                await self._pods_synced.wait()
        except OperationTimeoutError as e:
            self._logger.error(
                "Resource cache did not sync",
                error=str(e),
                nodes_synced=self._nodes_synced.is_set(),
                pods_synced=self._pods_synced.is_set(),
            )
            return False
        return True

    async def run_nodes(self) -> None:
        """Keep the node cache current until cancelled."""
        await self._run(
            "Node",
            self._node_storage,
            self.replace_nodes,
            self.update_node,
            self._nodes_synced,
        )

    async def run_pods(self) -> None:
        """Keep the pod cache current until cancelled."""
        await self._run(
            "Pod",
            self._pod_storage,
            self.replace_pods,
            self.update_pod,
            self._pods_synced,
        )

    def replace_nodes(self, nodes: list[NodeSnapshot]) -> None:
        """Replace the cached nodes with the results of a full list.

        Parameters
        ----------
        nodes
            Snapshots of every node.
        """
        old = self._nodes
        self._nodes = {n.name: n for n in nodes}
        changed = [n.name for n in nodes if old.get(n.name) != n]
        self._notify(changed)

    def update_node(self, event: WatchEvent[NodeSnapshot]) -> None:
        """Apply a change to a single node.

        Parameters
        ----------
        event
            Watch event for the node.
        """
        node = event.object
        if event.action == WatchEventType.DELETED:
            self._nodes.pop(node.name, None)
            return
        self._nodes[node.name] = node
        self._notify([node.name])

    def replace_pods(self, pods: list[PodSnapshot]) -> None:
        """Replace the cached pods with the results of a full list.

        Parameters
        ----------
        pods
            Snapshots of every scheduled pod.
        """
        old = self._pods
        self._pods = {p.key: p for p in pods}
        self._index.clear()
        for pod in pods:
            self._index.update(pod)

        affected = {p.node_name for p in pods if old.get(p.key) != p}
        for key, pod in old.items():
            if self._pods.get(key) != pod:
                affected.add(pod.node_name)
        self._notify(sorted(affected))

    def update_pod(self, event: WatchEvent[PodSnapshot]) -> None:
        """Apply a change to a single pod.

        Parameters
        ----------
        event
            Watch event for the pod.
        """
        pod = event.object
        if event.action == WatchEventType.DELETED:
            self._pods.pop(pod.key, None)
            previous = self._index.remove(pod.key)
            self._notify([pod.node_name, previous or ""])
            return
        self._pods[pod.key] = pod
        previous = self._index.update(pod)
        self._notify([pod.node_name, previous or ""])

    async def _run[T](
        self,
        kind: str,
        storage: SnapshotSource[T],
        replace: Callable[[list[T]], None],
        update: Callable[[WatchEvent[T]], None],
        synced: asyncio.Event,
    ) -> None:
        """Run a list and watch loop for one kind of object.

        Errors are logged and the loop retries after a delay, so this only
        returns when cancelled.
        """
        logger = self._logger.bind(kind=kind)
        delay = WATCH_RETRY_DELAY.total_seconds()
        while True:
            try:
                objects, resource_version = await storage.list()
                replace(objects)
                if not synced.is_set():
                    synced.set()
                    logger.info("Cache synced", count=len(objects))
                else:
                    logger.debug("Cache resynced", count=len(objects))
                watch = storage.watch(resource_version, self._resync_interval)
                async for event in watch:
                    update(event)
            except Exception:
                logger.exception(f"Error updating cache, retrying in {delay}s")
                await asyncio.sleep(delay)

    def _notify(self, names: list[str]) -> None:
        if self._changes is not None:
            self._changes.put_all(n for n in names if n)
