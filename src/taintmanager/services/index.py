"""Secondary index of cached pods by node."""

from __future__ import annotations

from collections import defaultdict

from ..models.domain.kubernetes import PodSnapshot

__all__ = ["PodKey", "PodNodeIndex"]

type PodKey = tuple[str, str]
"""Namespace and name of a pod."""


class PodNodeIndex:
    """Track which pods are bound to which node.

    The index is updated incrementally with every change to the pod cache and
    never rebuilt on lookup. It remembers the node each pod was last indexed
    under so that a pod whose node changes is moved out of its old bucket.
    Unscheduled pods are not indexed.
    """

    def __init__(self) -> None:
        self._by_node: defaultdict[str, set[PodKey]] = defaultdict(set)
        self._node_of: dict[PodKey, str] = {}

    def clear(self) -> None:
        """Remove all entries from the index."""
        self._by_node.clear()
        self._node_of.clear()

    def lookup(self, node_name: str) -> set[PodKey]:
        """Return the keys of pods bound to a node.

        Parameters
        ----------
        node_name
            Name of the node.

        Returns
        -------
        set of tuple
            Keys of the pods on that node, empty if there are none.
        """
        return set(self._by_node.get(node_name, ()))

    def remove(self, key: PodKey) -> str | None:
        """Remove a pod from the index.

        Parameters
        ----------
        key
            Key of the pod.

        Returns
        -------
        str or None
            Node the pod was indexed under, or `None` if it was not indexed.
        """
        node_name = self._node_of.pop(key, None)
        if node_name is None:
            return None
        bucket = self._by_node[node_name]
        bucket.discard(key)
        if not bucket:
            del self._by_node[node_name]
        return node_name

    def update(self, pod: PodSnapshot) -> str | None:
        """Add or update a pod in the index.

        Parameters
        ----------
        pod
            New snapshot of the pod.

        Returns
        -------
        str or None
            Node the pod was previously indexed under, if that differs from
            its current node.
        """
        previous = self._node_of.get(pod.key)
        if previous == pod.node_name:
            return None
        if previous is not None:
            self.remove(pod.key)
        if pod.node_name:
            self._by_node[pod.node_name].add(pod.key)
            self._node_of[pod.key] = pod.node_name
        return previous
