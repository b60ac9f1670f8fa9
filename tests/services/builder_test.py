"""Tests for construction of taint removal patches."""

from __future__ import annotations

from itertools import combinations

import pytest

from taintmanager.models.domain.kubernetes import NodeSnapshot, Taint
from taintmanager.models.domain.patch import PatchOperationType
from taintmanager.services.builder import TaintPatchBuilder

from ..support.kubernetes import GATE, make_node


def apply_removals(node: NodeSnapshot, positions: list[int]) -> list[Taint]:
    """Apply the removals of a built patch one after another."""
    patch = TaintPatchBuilder().build(node, positions)
    taints = list(node.taints)
    for operation in patch:
        if operation.op == PatchOperationType.REMOVE:
            del taints[int(operation.path.rsplit("/", 1)[1])]
    return taints


def test_build() -> None:
    node = make_node("n1", [(GATE, ""), ("other", "")], resource_version="7")

    patch = TaintPatchBuilder().build(node, [0])

    assert [o.to_kubernetes() for o in patch] == [
        {"op": "test", "path": "/metadata/resourceVersion", "value": "7"},
        {"op": "test", "path": "/spec/taints/0/key", "value": GATE},
        {"op": "remove", "path": "/spec/taints/0"},
    ]


def test_descending_order() -> None:
    node = make_node("n1", [(GATE, "a"), ("other", ""), (GATE, "b")])

    patch = TaintPatchBuilder().build(node, [0, 2, 2])

    removals = [o.path for o in patch if o.op == PatchOperationType.REMOVE]
    assert removals == ["/spec/taints/2", "/spec/taints/0"]


def test_nothing_to_remove() -> None:
    node = make_node("n1", [(GATE, "")])
    assert TaintPatchBuilder().build(node, []) == []


def test_no_resource_version() -> None:
    node = NodeSnapshot(
        name="n1",
        creation_timestamp=None,
        resource_version=None,
        taints=(Taint(key=GATE),),
    )

    patch = TaintPatchBuilder().build(node, [0])

    assert [o.op for o in patch] == [
        PatchOperationType.TEST,
        PatchOperationType.REMOVE,
    ]


def test_invalid_positions() -> None:
    node = make_node("n1", [(GATE, "")])
    builder = TaintPatchBuilder()

    with pytest.raises(ValueError, match="invalid"):
        builder.build(node, [1])
    with pytest.raises(ValueError, match="invalid"):
        builder.build(node, [-1])


def test_non_destructive() -> None:
    keys = ["a", GATE, "b", GATE, "c"]
    node = make_node("n1", [(k, str(i)) for i, k in enumerate(keys)])
    all_positions = range(len(keys))

    for size in range(len(keys) + 1):
        for subset in combinations(all_positions, size):
            result = apply_removals(node, list(subset))
            expected = [
                t for i, t in enumerate(node.taints) if i not in subset
            ]
            assert result == expected


def test_index_order_safety() -> None:
    node = make_node("n1", [(GATE, "a"), (GATE, "b"), ("x", ""), (GATE, "c")])

    # Sequential application of the patch matches removing every position
    # from the original list at once, whatever order the positions come in.
    for positions in ([0, 1, 3], [3, 0, 1], [1, 3]):
        simultaneous = [
            t for i, t in enumerate(node.taints) if i not in positions
        ]
        assert apply_removals(node, positions) == simultaneous
