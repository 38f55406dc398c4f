"""Exceptions for volguard."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from fastapi import status
from kubernetes_asyncio.client import ApiException
from safir.datetime import format_datetime_for_logging
from safir.fastapi import ClientRequestError
from safir.slack.blockkit import (
    SlackBaseField,
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)
from safir.slack.sentry import SentryEventInfo

from .units import bytes_to_quantity

__all__ = [
    "AdmissionDeniedError",
    "CapacityQueryError",
    "ExpansionValidationError",
    "KubernetesError",
    "MissingObjectError",
    "NamespaceBusyError",
    "NotConfiguredError",
    "OperationTimeoutError",
    "ResourceShortageError",
    "VolumeBackendError",
]


class NotConfiguredError(ClientRequestError):
    """An attempt was made to use a disabled service."""

    error = "not_supported"
    status_code = status.HTTP_404_NOT_FOUND


class AdmissionDeniedError(SlackException):
    """Base class for reasons an admission request is denied.

    The string form of the exception is returned verbatim to the requester,
    so it must identify the object and, where relevant, the node.
    """

    retriable: bool = False
    """Whether the denial may succeed if the request is retried."""


class ExpansionValidationError(AdmissionDeniedError):
    """The request is malformed or asks for a disallowed change.

    Raised for volume shrinks when the shrink policy denies them, for resize
    annotations that cannot be parsed, and for objects that cannot be
    decoded.
    """


class MissingObjectError(ExpansionValidationError):
    """An object referenced by the request does not exist.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of the missing object, such as ``Cluster`` or
        ``VolumeClaimTemplate``.
    namespace
        Namespace of the missing object.
    name
        Name of the missing object.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        namespace: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        if self.name:
            if self.namespace:
                obj = f"{self.kind} {self.namespace}/{self.name}"
            else:
                obj = f"{self.kind} {self.name}"
        elif self.namespace:
            obj = f"{self.kind} (namespace: {self.namespace})"
        else:
            obj = self.kind
        message.blocks.append(SlackTextBlock(heading="Object", text=obj))
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
        info.tags["kind"] = self.kind
        if self.name:
            info.tags["name"] = self.name
        if self.namespace:
            info.tags["namespace"] = self.namespace
        return info


class ResourceShortageError(AdmissionDeniedError):
    """A node lacks the free capacity to satisfy a volume expansion.

    Parameters
    ----------
    namespace
        Namespace of the object requesting the expansion.
    name
        Name of the object requesting the expansion.
    node
        Node with insufficient free capacity.
    free
        Free volume group capacity of the node in bytes.
    requested
        Requested expansion in bytes.
    """

    def __init__(
        self,
        *,
        namespace: str,
        name: str,
        node: str,
        free: int,
        requested: int,
    ) -> None:
        free_str = bytes_to_quantity(free)
        requested_str = bytes_to_quantity(requested)
        msg = (
            f"Volume expansion of {namespace}/{name} denied, insufficient"
            f" storage on node {node}: {free_str} free < {requested_str}"
            " requested delta"
        )
        super().__init__(msg)
        self.namespace = namespace
        self.name = name
        self.node = node
        self.free = free
        self.requested = requested


class NamespaceBusyError(AdmissionDeniedError):
    """Another admission review for the same namespace is in progress."""

    retriable = True

    def __init__(self, namespace: str) -> None:
        msg = (
            f"Conflicting volume expansion in {namespace} already in"
            " progress"
        )
        super().__init__(msg)
        self.namespace = namespace


class CapacityQueryError(SlackException):
    """The free capacity of a node could not be determined.

    Parameters
    ----------
    message
        Summary of error.
    node
        Node whose capacity was being queried, if known.
    """

    def __init__(self, message: str, node: str | None = None) -> None:
        super().__init__(message)
        self.node = node

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        if self.node:
            field = SlackTextField(heading="Node", text=self.node)
            message.fields.append(field)
        return message


class OperationTimeoutError(SlackException):
    """An admission review, capacity query, or reconcile step ran too long.

    Parameters
    ----------
    operation
        Description of the operation, used at the start of the message.
    namespace
        Namespace the operation was acting on, if any.
    started_at
        When the operation started.
    failed_at
        When the timeout expired.
    """

    def __init__(
        self,
        operation: str,
        namespace: str | None = None,
        *,
        started_at: datetime,
        failed_at: datetime,
    ) -> None:
        seconds = (failed_at - started_at).total_seconds()
        super().__init__(
            f"{operation} timed out after {seconds}s", failed_at=failed_at
        )
        self.operation = operation
        self.namespace = namespace
        self.started_at = started_at

    @override
    def to_slack(self) -> SlackMessage:
        """Report the start and expiration times to Slack."""
        fields: list[SlackBaseField] = [
            SlackTextField(
                heading="Started at",
                text=format_datetime_for_logging(self.started_at),
            ),
            SlackTextField(
                heading="Failed at",
                text=format_datetime_for_logging(self.failed_at),
            ),
        ]
        if self.namespace:
            fields.append(
                SlackTextField(heading="Namespace", text=self.namespace)
            )
        return SlackMessage(message=str(self), fields=fields)

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        context = info.contexts.setdefault("info", {})
        context["started_at"] = format_datetime_for_logging(self.started_at)
        if self.namespace:
            info.tags["namespace"] = self.namespace
        return info


class KubernetesError(SlackException):
    """A call to the Kubernetes API failed.

    Parameters
    ----------
    message
        What was being attempted, such as ``Error reading Cluster``.
    kind
        Kind of the object involved, if known.
    namespace
        Namespace of the object involved, if known.
    name
        Name of the object involved, if known.
    status
        HTTP status of the failed call, if any.
    body
        Error returned by the API server, if any.
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
        """Wrap an exception raised by the Kubernetes client.

        The response body is preferred as the error text, falling back on
        the HTTP reason phrase.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body or exc.reason,
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

    @property
    def object_ref(self) -> str | None:
        """Reference to the object involved, such as ``Cluster ns/db``."""
        if not self.name:
            return self.kind
        ref = f"{self.namespace}/{self.name}" if self.namespace else self.name
        return f"{self.kind} {ref}" if self.kind else ref

    @override
    def __str__(self) -> str:
        if self.body:
            return f"{self._summary()}: {self.body}"
        return self._summary()

    @override
    def to_slack(self) -> SlackMessage:
        """Report the status as a field and the API error as a code block."""
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            status = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(status)
        if self.body:
            error = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(error)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        tags = {
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "status": str(self.status) if self.status else None,
        }
        info.tags.update({k: v for k, v in tags.items() if v})
        if self.body:
            info.attachments["body"] = self.body
        return info

    def _summary(self) -> str:
        details = []
        if self.object_ref:
            details.append(self.object_ref)
        if self.status:
            details.append(f"status {self.status}")
        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"


class VolumeBackendError(SlackException):
    """An LVM command failed.

    Parameters
    ----------
    message
        Summary of error.
    command
        Command that was run.
    error
        Standard error of the command, if any.
    """

    def __init__(
        self, message: str, command: list[str], error: str | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.command = command
        self.error = error

    @override
    def __str__(self) -> str:
        if self.error:
            return f"{self.message}: {self.error}"
        return self.message

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self.message
        command = " ".join(self.command)
        message.blocks.append(SlackCodeBlock(heading="Command", code=command))
        if self.error:
            block = SlackCodeBlock(heading="Error", code=self.error)
            message.blocks.append(block)
        return message
