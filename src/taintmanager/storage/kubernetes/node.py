"""Storage layer for Kubernetes node objects."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Node
from structlog.stdlib import BoundLogger

from ...exceptions import (
    InvalidObjectError,
    KubernetesError,
    NodePatchConflictError,
)
from ...models.domain.kubernetes import NodeSnapshot, WatchEventType
from ...models.domain.patch import PatchOperation
from .watcher import KubernetesWatcher, WatchEvent

__all__ = ["NodeStorage"]


class NodeStorage:
    """Storage layer for Kubernetes node objects.

    Nodes are returned as immutable snapshots. Nodes that cannot be converted
    are logged and skipped.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger

    async def list(self) -> tuple[list[NodeSnapshot], str | None]:
        """List all nodes.

        Returns
        -------
        tuple of list of NodeSnapshot and str
            Snapshots of all nodes and the resource version of the list,
            from which a watch can be started.

        Raises
        ------
        KubernetesError
            Raised if the Kubernetes API call fails.
        """
        try:
            nodes = await self._api.list_node()
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing nodes", e, kind="Node"
            ) from e
        snapshots = []
        for node in nodes.items:
            snapshot = self._to_snapshot(node)
            if snapshot:
                snapshots.append(snapshot)
        return snapshots, nodes.metadata.resource_version

    async def patch(
        self, name: str, operations: list[PatchOperation]
    ) -> None:
        """Apply a JSON patch to a node.

        Parameters
        ----------
        name
            Name of the node.
        operations
            JSON patch operations to apply atomically.

        Raises
        ------
        KubernetesError
            Raised if the Kubernetes API call fails.
        NodePatchConflictError
            Raised if the patch was rejected because the node no longer
            matches what the patch expected.
        """
        body = [o.to_kubernetes() for o in operations]
        try:
            await self._api.patch_node(name, body)
        except ApiException as e:
            if e.status in (409, 422):
                raise NodePatchConflictError.from_exception(
                    "Node changed before taints could be removed",
                    e,
                    kind="Node",
                    name=name,
                ) from e
            raise KubernetesError.from_exception(
                "Error patching node", e, kind="Node", name=name
            ) from e

    async def read(self, name: str) -> NodeSnapshot | None:
        """Read the current state of a node directly from the API server.

        Parameters
        ----------
        name
            Name of the node.

        Returns
        -------
        NodeSnapshot or None
            Snapshot of the node, or `None` if the node does not exist or
            could not be converted.

        Raises
        ------
        KubernetesError
            Raised if the Kubernetes API call fails.
        """
        try:
            node = await self._api.read_node(name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading node", e, kind="Node", name=name
            ) from e
        return self._to_snapshot(node)

    async def watch(
        self, resource_version: str | None, timeout: timedelta
    ) -> AsyncIterator[WatchEvent[NodeSnapshot]]:
        """Watch for changes to nodes.

        Parameters
        ----------
        resource_version
            Resource version from which to start the watch.
        timeout
            How long to watch before the iterator ends.

        Yields
        ------
        WatchEvent
            Change to a node.

        Raises
        ------
        KubernetesError
            Raised if the Kubernetes API call fails.
        """
        watcher = KubernetesWatcher(
            method=self._api.list_node,
            object_type=V1Node,
            kind="Node",
            resource_version=resource_version,
            timeout=timeout,
            logger=self._logger,
        )
        try:
            async for event in watcher.watch():
                if event.action == WatchEventType.BOOKMARK:
                    continue
                snapshot = self._to_snapshot(event.object)
                if snapshot:
                    yield WatchEvent(action=event.action, object=snapshot)
        finally:
            await watcher.close()

    def _to_snapshot(self, node: V1Node) -> NodeSnapshot | None:
        try:
            return NodeSnapshot.from_kubernetes(node)
        except InvalidObjectError as e:
            self._logger.error("Ignoring invalid node", error=str(e))
            return None
