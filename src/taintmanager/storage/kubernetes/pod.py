"""Storage layer for ``Pod`` objects."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Pod
from structlog.stdlib import BoundLogger

from ...exceptions import InvalidObjectError, KubernetesError
from ...models.domain.kubernetes import PodSnapshot, WatchEventType
from .watcher import KubernetesWatcher, WatchEvent

__all__ = ["PodStorage"]

_SCHEDULED_SELECTOR = "spec.nodeName!="
"""Field selector matching only pods that have been bound to a node."""


class PodStorage:
    """Storage layer for ``Pod`` objects across all namespaces.

    Only pods already bound to a node are listed or watched, since pods
    that are not yet scheduled cannot affect the taints of any node.

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

    async def list(self) -> tuple[list[PodSnapshot], str | None]:
        """List all scheduled pods.

        Returns
        -------
        tuple of list of PodSnapshot and str
            Snapshots of all scheduled pods and the resource version of the
            list, from which a watch can be started.

        Raises
        ------
        KubernetesError
            Raised if the Kubernetes API call fails.
        """
        try:
            pods = await self._api.list_pod_for_all_namespaces(
                field_selector=_SCHEDULED_SELECTOR
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing pods", e, kind="Pod"
            ) from e
        snapshots = []
        for pod in pods.items:
            snapshot = self._to_snapshot(pod)
            if snapshot:
                snapshots.append(snapshot)
        return snapshots, pods.metadata.resource_version

    async def watch(
        self, resource_version: str | None, timeout: timedelta
    ) -> AsyncIterator[WatchEvent[PodSnapshot]]:
        """Watch for changes to scheduled pods.

        Parameters
        ----------
        resource_version
            Resource version from which to start the watch.
        timeout
            How long to watch before the iterator ends.

        Yields
        ------
        WatchEvent
            Change to a pod.

        Raises
        ------
        KubernetesError
            Raised if the Kubernetes API call fails.
        """
        watcher = KubernetesWatcher(
            method=self._api.list_pod_for_all_namespaces,
            object_type=V1Pod,
            kind="Pod",
            field_selector=_SCHEDULED_SELECTOR,
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

    def _to_snapshot(self, pod: V1Pod) -> PodSnapshot | None:
        try:
            return PodSnapshot.from_kubernetes(pod)
        except InvalidObjectError as e:
            self._logger.error("Ignoring invalid pod", error=str(e))
            return None
