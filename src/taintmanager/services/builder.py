"""Construction of JSON patches that remove node taints."""

from __future__ import annotations

from collections.abc import Iterable

from ..models.domain.kubernetes import NodeSnapshot
from ..models.domain.patch import PatchOperation, PatchOperationType

__all__ = ["TaintPatchBuilder"]


class TaintPatchBuilder:
    """Construct the patch that removes taints from a node.

    Removals are positional, so each removal shifts the taints after it.
    Operations are therefore emitted from the highest position down, which
    keeps every index valid no matter how many earlier removals in the same
    patch have already been applied.

    The patch is made conditional on the snapshot it was computed from.
    It starts with a ``test`` of the node resource version, and each removal
    is preceded by a ``test`` that the taint at that position still has the
    expected key. If the node changed in the meantime, the API server rejects
    the whole patch instead of removing the wrong taint.
    """

    def build(
        self, node: NodeSnapshot, positions: Iterable[int]
    ) -> list[PatchOperation]:
        """Build a patch removing the taints at the given positions.

        Parameters
        ----------
        node
            Snapshot from which the positions were computed.
        positions
            Positions in ``node.taints`` to remove.

        Returns
        -------
        list of PatchOperation
            JSON patch operations, or an empty list if there is nothing to
            remove.

        Raises
        ------
        ValueError
            Raised if a position is outside the taint list of the node.
        """
        ordered = sorted(set(positions), reverse=True)
        if not ordered:
            return []
        if ordered[0] >= len(node.taints) or ordered[-1] < 0:
            msg = f"Taint positions {ordered} invalid for node {node.name}"
            raise ValueError(msg)

        patch = []
        if node.resource_version:
            test = PatchOperation(
                op=PatchOperationType.TEST,
                path="/metadata/resourceVersion",
                value=node.resource_version,
            )
            patch.append(test)
        for position in ordered:
            path = f"/spec/taints/{position}"
            key = node.taints[position].key
            patch.append(
                PatchOperation(
                    op=PatchOperationType.TEST, path=f"{path}/key", value=key
                )
            )
            patch.append(
                PatchOperation(op=PatchOperationType.REMOVE, path=path)
            )
        return patch
