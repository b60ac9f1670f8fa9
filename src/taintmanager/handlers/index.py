"""Handlers for the app's root, ``/``."""

from fastapi import APIRouter
from safir.metadata import Metadata, get_metadata

from ..constants import APPLICATION_NAME

internal_router = APIRouter()
"""Router to mount at the root of the application URL space."""

__all__ = ["internal_router"]


@internal_router.get(
    "/",
    description=(
        "Return metadata about the running application. Can also be used as"
        " a health check."
    ),
    include_in_schema=False,
    response_model=Metadata,
    response_model_exclude_none=True,
    summary="Application metadata (internal)",
)
async def get_internal_index() -> Metadata:
    return get_metadata(
        package_name=APPLICATION_NAME, application_name=APPLICATION_NAME
    )
