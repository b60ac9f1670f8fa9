"""Snapshots of the Kubernetes objects the taint manager cares about.

Nodes and pods are projected down to only the fields needed to decide
whether a taint can be removed as soon as they are received from the API
server. The snapshots are frozen, so the cache can hand them out without
worrying that a caller will modify its contents.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Self

from kubernetes_asyncio.client import (
    V1Node,
    V1OwnerReference,
    V1Pod,
    V1Taint,
    V1Toleration,
)

from ...constants import DAEMONSET_KIND
from ...exceptions import InvalidObjectError

__all__ = [
    "NodeSnapshot",
    "OwnerReference",
    "PodSnapshot",
    "PodToleration",
    "Taint",
    "TolerationOperator",
    "WatchEventType",
]


class TolerationOperator(Enum):
    """Possible operators for a toleration.

    Operators added to Kubernetes after this list was written are mapped to
    ``UNKNOWN`` rather than rejected, so that a pod is never dropped from the
    cache because of a toleration it carries for some unrelated taint.
    """

    EQUAL = "Equal"
    EXISTS = "Exists"
    LESS_THAN = "Lt"
    GREATER_THAN = "Gt"
    UNKNOWN = "Unknown"

    @classmethod
    def _missing_(cls, value: Any) -> TolerationOperator:
        return cls.UNKNOWN


class WatchEventType(Enum):
    """Possible values of the ``type`` field of Kubernetes watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"


@dataclass(frozen=True, slots=True)
class Taint:
    """A single taint on a node."""

    key: str
    """Taint key."""

    value: str = ""
    """Taint value, empty if the taint has none."""

    effect: str = ""
    """Taint effect, such as ``NoSchedule``."""

    @classmethod
    def from_kubernetes(cls, taint: V1Taint) -> Self:
        """Convert from the Kubernetes model."""
        return cls(
            key=taint.key, value=taint.value or "", effect=taint.effect or ""
        )


@dataclass(frozen=True, slots=True)
class PodToleration:
    """A single toleration of a pod."""

    key: str
    """Taint key tolerated, empty to match all keys."""

    operator: TolerationOperator = TolerationOperator.EQUAL
    """How the toleration matches taint values."""

    value: str = ""
    """Taint value tolerated, empty for ``Exists`` tolerations."""

    @classmethod
    def from_kubernetes(cls, toleration: V1Toleration) -> Self:
        """Convert from the Kubernetes model."""
        operator = TolerationOperator(toleration.operator or "Equal")
        return cls(
            key=toleration.key or "",
            operator=operator,
            value=toleration.value or "",
        )

    @property
    def is_scoped(self) -> bool:
        """Whether this toleration applies only to one taint value.

        Only ``Equal`` tolerations with a value are scoped. Any other operator
        is treated as covering every value of the key, so a pod whose
        toleration cannot be interpreted still gates every instance.
        """
        return self.operator == TolerationOperator.EQUAL and bool(self.value)


@dataclass(frozen=True, slots=True)
class OwnerReference:
    """Reference to the controller that created a pod."""

    kind: str
    """Kind of the owning object."""

    name: str
    """Name of the owning object."""

    @classmethod
    def from_kubernetes(
        cls, references: list[V1OwnerReference] | None
    ) -> Self | None:
        """Choose the controlling reference from a pod's owner references.

        Parameters
        ----------
        references
            Owner references from the pod metadata.

        Returns
        -------
        OwnerReference or None
            The reference marked as the controller, or the first reference
            if none are so marked, or `None` if there are no references.
        """
        if not references:
            return None
        for reference in references:
            if reference.controller:
                return cls(kind=reference.kind, name=reference.name)
        return cls(kind=references[0].kind, name=references[0].name)


@dataclass(frozen=True, slots=True)
class NodeSnapshot:
    """Projection of a Kubernetes ``Node``."""

    name: str
    """Name of the node."""

    creation_timestamp: datetime | None
    """When the node object was created."""

    resource_version: str | None
    """Resource version of the node object this snapshot was taken from.

    Taint positions are only meaningful against this exact version.
    """

    taints: tuple[Taint, ...] = ()
    """Taints on the node in their original order."""

    @classmethod
    def from_kubernetes(cls, node: V1Node) -> Self:
        """Project a Kubernetes node into a snapshot.

        Raises
        ------
        InvalidObjectError
            Raised if the node has no name or has a malformed taint.
        """
        if not node.metadata or not node.metadata.name:
            raise InvalidObjectError("Node has no name", kind="Node")
        taints: tuple[Taint, ...] = ()
        if node.spec and node.spec.taints:
            if any(not t.key for t in node.spec.taints):
                msg = "Node has a taint without a key"
                raise InvalidObjectError(
                    msg, kind="Node", name=node.metadata.name
                )
            taints = tuple(Taint.from_kubernetes(t) for t in node.spec.taints)
        return cls(
            name=node.metadata.name,
            creation_timestamp=node.metadata.creation_timestamp,
            resource_version=node.metadata.resource_version,
            taints=taints,
        )

    def taint_positions(self, key: str) -> list[int]:
        """Return the positions of all taints with the given key."""
        return [i for i, t in enumerate(self.taints) if t.key == key]


@dataclass(frozen=True, slots=True)
class PodSnapshot:
    """Projection of a Kubernetes ``Pod``."""

    name: str
    """Name of the pod."""

    namespace: str
    """Namespace of the pod."""

    owner: OwnerReference | None
    """Controller that created the pod, if any."""

    node_name: str
    """Node the pod is bound to, empty if the pod is not yet scheduled."""

    tolerations: tuple[PodToleration, ...]
    """Tolerations of the pod."""

    ready: bool
    """Whether the ``Ready`` condition of the pod is true."""

    @classmethod
    def from_kubernetes(cls, pod: V1Pod) -> Self:
        """Project a Kubernetes pod into a snapshot.

        Raises
        ------
        InvalidObjectError
            Raised if the pod has no name.
        """
        if not pod.metadata or not pod.metadata.name:
            raise InvalidObjectError("Pod has no name", kind="Pod")
        name = pod.metadata.name
        namespace = pod.metadata.namespace or ""
        owner = OwnerReference.from_kubernetes(
            pod.metadata.owner_references
        )

        node_name = ""
        tolerations: tuple[PodToleration, ...] = ()
        if pod.spec:
            node_name = pod.spec.node_name or ""
            tolerations = tuple(
                PodToleration.from_kubernetes(t)
                for t in pod.spec.tolerations or []
            )

        ready = False
        if pod.status and pod.status.conditions:
            ready = any(
                c.type == "Ready" and c.status == "True"
                for c in pod.status.conditions
            )

        return cls(
            name=name,
            namespace=namespace,
            owner=owner,
            node_name=node_name,
            tolerations=tolerations,
            ready=ready,
        )

    @property
    def is_daemonset_pod(self) -> bool:
        """Whether this pod was created by a ``DaemonSet``."""
        return self.owner is not None and self.owner.kind == DAEMONSET_KIND

    @property
    def key(self) -> tuple[str, str]:
        """Unique key of the pod within the cluster."""
        return (self.namespace, self.name)
