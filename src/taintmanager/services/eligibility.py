"""Decide which gating taints on a node can be removed."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from ..models.domain.kubernetes import NodeSnapshot, PodSnapshot, Taint

__all__ = [
    "TaintEvaluation",
    "TaintEvaluator",
    "tolerates_taint",
]


def tolerates_taint(pod: PodSnapshot, taint: Taint) -> bool:
    """Whether a pod opted in to run on a node carrying a gating taint.

    Only tolerations that name the taint key explicitly count. A toleration
    scoped to a value only applies to the taint instance with that value,
    while an unscoped toleration applies to every instance of the key. A
    taint without a value is associated with every pod tolerating its key.

    Parameters
    ----------
    pod
        Pod to check.
    taint
        Gating taint instance.

    Returns
    -------
    bool
        `True` if the pod is one of the daemons gating this taint.
    """
    for toleration in pod.tolerations:
        if toleration.key != taint.key:
            continue
        if not taint.value or not toleration.is_scoped:
            return True
        if toleration.value == taint.value:
            return True
    return False


@dataclass(frozen=True, slots=True)
class TaintEvaluation:
    """Result of evaluating the gating taints of one node."""

    node: NodeSnapshot
    """Snapshot the evaluation was computed from."""

    removable: list[int] = field(default_factory=list)
    """Positions of gating taints that may be removed, in ascending order.

    These positions are only valid against the taints in ``node``.
    """

    waiting: dict[int, list[str]] = field(default_factory=dict)
    """Gating taints that must stay, with the pods not yet ready.

    An empty list means no daemon pod tolerating the taint has been seen.
    """

    @property
    def is_gated(self) -> bool:
        """Whether the node carries any gating taint at all."""
        return bool(self.removable or self.waiting)


class TaintEvaluator:
    """Decide whether gating taints may be removed from a node.

    A gating taint is removable once every daemonset pod on the node that
    tolerates it reports ready. A gating taint with no such pod is never
    removable, since removing it would open the node to ordinary workloads
    before any of its daemons had been observed.

    Parameters
    ----------
    taint_key
        Key of the gating taint.
    """

    def __init__(self, taint_key: str) -> None:
        self._taint_key = taint_key

    @property
    def taint_key(self) -> str:
        """Key of the gating taint."""
        return self._taint_key

    def evaluate(
        self, node: NodeSnapshot, pods: Iterable[PodSnapshot]
    ) -> TaintEvaluation:
        """Determine which gating taints of a node may be removed.

        This has no side effects and depends only on its arguments.

        Parameters
        ----------
        node
            Snapshot of the node.
        pods
            Snapshots of the pods bound to that node.

        Returns
        -------
        TaintEvaluation
            Removable positions and the reasons the others must stay.
        """
        positions = node.taint_positions(self._taint_key)
        if not positions:
            return TaintEvaluation(node=node)
        daemons = [p for p in pods if p.is_daemonset_pod]

        removable = []
        waiting = {}
        for position in positions:
            taint = node.taints[position]
            gating = [p for p in daemons if tolerates_taint(p, taint)]
            unready = [
                f"{p.namespace}/{p.name}" for p in gating if not p.ready
            ]
            if gating and not unready:
                removable.append(position)
            else:
                waiting[position] = sorted(unready)
        return TaintEvaluation(node=node, removable=removable, waiting=waiting)
