"""Global configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Literal, Self

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .constants import (
    DEFAULT_CAPACITY_QUERY,
    DEFAULT_FIXED_FREE_BYTES,
    KUBERNETES_REQUEST_TIMEOUT,
    METRICS_INTERVAL,
    RECONCILE_INTERVAL,
    RESIZE_TIMEOUT,
)
from .models.domain.expansion import LockMode, ResourceKind, ShrinkPolicy

__all__ = [
    "AdmissionConfig",
    "AgentConfig",
    "CapacityConfig",
    "Config",
    "DisabledAgentConfig",
    "EnabledAgentConfig",
    "FixedCapacityConfig",
    "PrometheusCapacityConfig",
]


class CapacityConfig(BaseModel):
    """Configuration for the capacity oracle.

    This is a base class that must be subclassed by the different supported
    sources of node capacity.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    mode: Annotated[
        str, Field(title="Source of capacity data", examples=["prometheus"])
    ]


class PrometheusCapacityConfig(CapacityConfig):
    """Query node free capacity from Prometheus."""

    mode: Literal["prometheus"]

    url: Annotated[
        str,
        Field(
            title="Prometheus URL",
            description="Base URL of the Prometheus server to query",
            examples=["http://prometheus.monitoring.svc:9090"],
        ),
    ]

    query: Annotated[
        str,
        Field(
            title="PromQL query template",
            description=(
                "Query returning the free volume group space of a node in"
                " bytes. ``{node}`` is replaced with the node name; literal"
                " braces must be doubled."
            ),
        ),
    ] = DEFAULT_CAPACITY_QUERY

    @model_validator(mode="after")
    def _validate_query(self) -> Self:
        if "{node}" not in self.query:
            raise ValueError("Capacity query must contain {node}")
        return self


class FixedCapacityConfig(CapacityConfig):
    """Report a fixed free capacity for every node.

    Used where the Prometheus metrics are not available. Every node is
    assumed to have the same free space.
    """

    mode: Literal["fixed"]

    free_bytes: Annotated[
        int,
        Field(
            title="Free capacity",
            description="Free capacity in bytes reported for every node",
            ge=0,
        ),
    ] = DEFAULT_FIXED_FREE_BYTES


class AdmissionConfig(BaseModel):
    """Configuration for the admission decision engine."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    lock_mode: Annotated[
        LockMode,
        Field(
            title="Namespace lock mode",
            description=(
                "Whether a review in a namespace that already has a review in"
                " progress waits for it (``blocking``) or is denied as"
                " retriable (``reject``)"
            ),
        ),
    ] = LockMode.BLOCKING

    max_namespace_locks: Annotated[
        int,
        Field(
            title="Maximum cached namespace locks",
            description=(
                "Idle namespace locks beyond this count are discarded, least"
                " recently used first"
            ),
            ge=1,
        ),
    ] = 1024

    shrink_policy: Annotated[
        dict[ResourceKind, ShrinkPolicy],
        Field(
            title="Shrink policy",
            description=(
                "Whether a request that reduces the volume size is allowed or"
                " denied, per kind of object. Kinds not listed are denied."
            ),
            default_factory=lambda: {
                ResourceKind.CLUSTER: ShrinkPolicy.DENY,
                ResourceKind.OPS_REQUEST: ShrinkPolicy.DENY,
                ResourceKind.STATEFUL_SET: ShrinkPolicy.ALLOW,
            },
        ),
    ]

    timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Review timeout",
            description=(
                "Total time allowed for the Kubernetes lookups and capacity"
                " queries of one review. Must be shorter than the webhook"
                " timeout configured in Kubernetes."
            ),
        ),
    ] = timedelta(seconds=8)

    def shrink_policy_for(self, kind: ResourceKind) -> ShrinkPolicy:
        """Return the shrink policy for a kind of object."""
        return self.shrink_policy.get(kind, ShrinkPolicy.DENY)


class AgentConfig(BaseModel):
    """Base configuration for the node agent."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    enabled: bool = Field(
        ...,
        title="Whether the node agent is enabled",
        description=(
            "If enabled, this process reconciles logical volume sizes and"
            " publishes volume group metrics for the node it runs on"
        ),
    )


class DisabledAgentConfig(AgentConfig):
    """Configuration when the node agent is disabled."""

    enabled: Literal[False] = False


class EnabledAgentConfig(AgentConfig):
    """Configuration for an enabled node agent."""

    enabled: Literal[True]

    lvm_command: Annotated[
        Path,
        Field(
            title="LVM command",
            description="Path to the ``lvm`` binary",
        ),
    ] = Path("lvm")

    metrics_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Metrics refresh interval",
            description="How often to refresh volume group metrics",
        ),
    ] = METRICS_INTERVAL

    reconcile_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Reconcile interval",
            description="How often to reconcile logical volume sizes",
        ),
    ] = RECONCILE_INTERVAL

    resize_filesystem: Annotated[
        bool,
        Field(
            title="Resize filesystem",
            description=(
                "Whether to grow the filesystem along with the logical volume"
            ),
        ),
    ] = True

    resize_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Resize timeout",
            description="How long to wait for a single volume resize",
        ),
    ] = RESIZE_TIMEOUT


class Config(BaseSettings):
    """volguard configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "volguard"

    node_name: Annotated[
        str | None,
        Field(
            title="Node name",
            description=(
                "Name of the Kubernetes node this process runs on. Required if"
                " the node agent is enabled. Normally injected via the"
                " downward API."
            ),
            validation_alias=AliasChoices("NODE_NAME", "nodeName"),
        ),
    ] = None

    path_prefix: Annotated[
        str,
        Field(
            title="URL prefix for the API",
            description="Prefix for all routes except health and metrics",
        ),
    ] = "/volguard"

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, failed capacity queries, failed reconciliation"
                " passes, and uncaught exceptions will be reported to Slack"
                " via this webhook"
            ),
            validation_alias=AliasChoices(
                "VOLGUARD_SLACK_WEBHOOK", "slackWebhook"
            ),
        ),
    ] = None

    kubernetes_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Kubernetes request timeout",
            description="Timeout for one-off Kubernetes API calls",
        ),
    ] = KUBERNETES_REQUEST_TIMEOUT

    admission: Annotated[
        AdmissionConfig,
        Field(
            title="Admission engine configuration",
            default_factory=AdmissionConfig,
        ),
    ]

    agent: Annotated[
        DisabledAgentConfig | EnabledAgentConfig,
        Field(title="Node agent configuration"),
    ] = DisabledAgentConfig()

    capacity: Annotated[
        PrometheusCapacityConfig | FixedCapacityConfig,
        Field(
            title="Capacity oracle configuration",
            description="Source of the free capacity of nodes",
            discriminator="mode",
        ),
    ]

    @model_validator(mode="after")
    def _validate_agent_node(self) -> Self:
        if self.agent.enabled and not self.node_name:
            raise ValueError("nodeName (or NODE_NAME) required for the agent")
        return self

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls(**yaml.safe_load(f))
