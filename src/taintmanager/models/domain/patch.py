"""Models for JSON patches sent to Kubernetes."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "PatchOperation",
    "PatchOperationType",
]


class PatchOperationType(Enum):
    """JSON patch operations used by the taint manager."""

    REMOVE = "remove"
    TEST = "test"


class PatchOperation(BaseModel):
    """A single JSON patch (:rfc:`6902`) operation."""

    model_config = ConfigDict(frozen=True)

    op: PatchOperationType = Field(..., title="Operation")

    path: str = Field(
        ...,
        title="JSON pointer",
        description="Location in the object the operation applies to",
        examples=["/spec/taints/1"],
    )

    value: str | None = Field(
        None,
        title="Expected value",
        description="Value to compare against, only used for `test`",
    )

    def to_kubernetes(self) -> dict[str, Any]:
        """Serialize to the form expected by the Kubernetes API."""
        return self.model_dump(mode="json", exclude_none=True)
