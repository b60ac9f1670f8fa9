"""Exceptions for the node taint manager."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.datetime import format_datetime_for_logging
from safir.slack.blockkit import (
    SlackBaseField,
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)
from safir.slack.sentry import SentryEventInfo

__all__ = [
    "CacheSyncError",
    "InvalidObjectError",
    "KubernetesCredentialsError",
    "KubernetesError",
    "NodePatchConflictError",
    "OperationTimeoutError",
]


class OperationTimeoutError(SlackException):
    """Wraps `TimeoutError` with additional context and Slack support.

    Parameters
    ----------
    operation
        Operation that timed out.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self, operation: str, *, started_at: datetime, failed_at: datetime
    ) -> None:
        self.operation = operation
        self.started_at = started_at
        elapsed = failed_at - started_at
        msg = f"{operation} timed out after {elapsed.total_seconds()}s"
        super().__init__(msg, failed_at=failed_at)

    @override
    def to_slack(self) -> SlackMessage:
        """Format the exception as a Slack message.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting with
            `~safir.slack.webhook.SlackWebhookClient`.
        """
        started_at = format_datetime_for_logging(self.started_at)
        failed_at = format_datetime_for_logging(self.failed_at)
        fields: list[SlackBaseField] = [
            SlackTextField(heading="Started at", text=started_at),
            SlackTextField(heading="Failed at", text=failed_at),
        ]
        return SlackMessage(message=str(self), fields=fields)


class CacheSyncError(SlackException):
    """The node and pod cache did not finish its initial sync.

    Reconciling against a partial view of the cluster could remove a taint
    whose daemon pods have not been seen yet, so this is always fatal.
    """


class KubernetesCredentialsError(SlackException):
    """No usable Kubernetes credentials could be found."""


class InvalidObjectError(SlackException):
    """A Kubernetes object could not be converted into a snapshot.

    Parameters
    ----------
    message
        Summary of the problem.
    kind
        Kind of the object.
    name
        Name of the object, if known.
    namespace
        Namespace of the object, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.name = name
        self.namespace = namespace

    @override
    def __str__(self) -> str:
        if self.name and self.namespace:
            return f"{self.message} ({self.kind} {self.namespace}/{self.name})"
        elif self.name:
            return f"{self.message} ({self.kind} {self.name})"
        return f"{self.message} ({self.kind})"


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of object being acted on.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.name or self.kind:
            obj = self._object()
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return a collection of Sentry event metadata about the exception.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Sentry event metadata for use with \
            `~safir.sentry.before_send_handler`
        """
        info = super().to_sentry()
        if self.status:
            info.tags["status"] = str(self.status)
        if self.name:
            info.tags["name"] = self.name
        if self.kind:
            info.tags["kind"] = self.kind
        if self.namespace:
            info.tags["namespace"] = self.namespace
        if self.body:
            info.attachments["body"] = self.body
        return info

    def _object(self) -> str:
        """Describe the object being acted on."""
        if not self.name:
            if self.namespace:
                return f"{self.kind} in namespace {self.namespace}"
            return self.kind or ""
        kind = f"{self.kind} " if self.kind else ""
        if self.namespace:
            return f"{kind}{self.namespace}/{self.name}"
        return f"{kind}{self.name}"

    def _summary(self) -> str:
        """Summarize the exception.

        Produces a single-line summary, used for the main part of the Slack
        message and part of the stringification.
        """
        result = self.message
        details = []
        if self.name or self.kind:
            details.append(self._object())
        if self.status:
            details.append(f"status {self.status}")
        if details:
            result += " (" + ", ".join(details) + ")"
        return result


class NodePatchConflictError(KubernetesError):
    """The node changed between reading it and patching its taints.

    Raised when the API server rejects the conditional patch, either because
    the resource version test failed or because a removal index no longer
    exists. The caller should re-read the node and decide again.
    """
