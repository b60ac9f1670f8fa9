"""Watch Kubernetes for changes to a kind of object."""

from __future__ import annotations

import math
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Self

from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import WatchEventType

__all__ = [
    "KubernetesWatcher",
    "WatchEvent",
]


@dataclass
class WatchEvent[T]:
    """Parsed event from a Kubernetes watch.

    This model is intended only for use within the Kubernetes storage layer
    and by the resource cache, which applies the events to its snapshots.
    """

    action: WatchEventType
    """Action the event represents."""

    object: T
    """Affected Kubernetes object."""

    @classmethod
    def from_event(cls, event: dict[str, Any], object_type: type[T]) -> Self:
        """Create a `WatchEvent` from a watch event.

        Parameters
        ----------
        event
            Event as returned by the Kubernetes watch API.
        object_type
            Expected type of the object.

        Raises
        ------
        TypeError
            Raised if the type of the object in the watch event was incorrect.
        ValueError
            Raised if the event type was not recognized.
        """
        action = WatchEventType(event["type"])
        obj = event["object"]
        if not isinstance(obj, object_type):
            real_type = type(obj).__name__
            expected_type = object_type.__name__
            msg = f"Watch object was of type {real_type}, not {expected_type}"
            raise TypeError(msg)
        return cls(action=action, object=obj)


class KubernetesWatcher[T]:
    """Watch Kubernetes for events.

    This wrapper around the watch API of the Kubernetes client handles
    expired resource versions and passes an explicit return type to the
    watch, since the ``kubernetes_asyncio`` library otherwise discovers it
    by parsing the docstring of the list method.

    Unlike a one-shot watch for a single object, this watch is used to keep
    a cache current. When the resource version it started from has expired
    there is no way to know what was missed, so rather than silently
    restarting from the current state, the iterator ends and the caller is
    expected to list all objects again.

    Parameters
    ----------
    method
        API list method that supports the watch API.
    object_type
        Type of object being watched. This must match the type of object
        returned by the method.
    kind
        Kubernetes kind of object being watched, for error reporting.
    field_selector
        Field selector restricting the objects being watched.
    resource_version
        Resource version at which to start the watch.
    timeout
        How long the API server should keep the watch open. When it expires,
        the iterator ends normally. If `None`, the server default is used.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        field_selector: str | None = None,
        resource_version: str | None = None,
        timeout: timedelta | None = None,
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._logger = logger

        args: dict[str, str | int | None] = {
            "field_selector": field_selector,
            "resource_version": resource_version,
        }
        if timeout:
            args["timeout_seconds"] = math.ceil(timeout.total_seconds())
        self._args = {k: v for k, v in args.items() if v is not None}

        self._watch = Watch(return_type=object_type)

    async def close(self) -> None:
        """Close the internal API client used by the watch API."""
        self._watch.stop()
        await self._watch.close()

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Watch Kubernetes for events.

        The iteration ends when the server closes the watch, when `close` is
        called, or when the starting resource version has expired (a 410
        response). Events with an unrecognized type are skipped.

        Yields
        ------
        WatchEvent
            Next event from the watch.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server during the
            watch.
        """
        try:
            async with self._watch.stream(self._method, **self._args) as s:
                async for raw_event in s:
                    try:
                        event = WatchEvent.from_event(raw_event, self._type)
                    except ValueError:
                        event_type = raw_event.get("type")
                        msg = "Ignoring unknown watch event type"
                        self._logger.warning(msg, event_type=event_type)
                        continue
                    yield event
        except ApiException as e:
            if e.status == 410:
                version = self._args.get("resource_version")
                msg = f"Resource version {version} expired, ending watch"
                self._logger.info(msg, kind=self._kind)
                return
            raise KubernetesError.from_exception(
                "Error watching objects", e, kind=self._kind
            ) from e
