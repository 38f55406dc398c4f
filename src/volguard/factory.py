"""Component factory and global and per-request context management."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Self

import structlog
from httpx import AsyncClient
from kubernetes_asyncio.client import ApiClient
from prometheus_client import CollectorRegistry
from safir.dependencies.http_client import http_client_dependency
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config, EnabledAgentConfig, PrometheusCapacityConfig
from .services.admission import AdmissionEngine
from .services.capacity import (
    CapacityOracle,
    FixedCapacityOracle,
    PrometheusCapacityOracle,
)
from .services.collector import VolumeGroupCollector
from .services.locks import NamespaceLocks
from .services.reconciler import VolumeReconciler
from .services.resolver import ExpansionResolver
from .storage.kubernetes.custom import ClusterStorage
from .storage.kubernetes.pod import PodStorage
from .storage.kubernetes.pvc import PersistentVolumeClaimStorage
from .storage.lvm import LVMVolumeBackend
from .storage.prometheus import PrometheusClient

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds all of the per-process singletons and is managed by
    `~volguard.dependencies.context.ContextDependency`. It is used by the
    `Factory` class as a source of dependencies to inject into created
    service and storage objects, and by the context dependency as a source
    of singletons that should also be exposed to route handlers via the
    request context.
    """

    config: Config
    """volguard configuration."""

    http_client: AsyncClient
    """Shared HTTP client."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    locks: NamespaceLocks
    """Per-namespace locks shared by admission reviews and resizes."""

    registry: CollectorRegistry
    """Prometheus registry holding the volume group metrics."""

    slack_client: SlackWebhookClient | None
    """Optional Slack webhook client for alerts."""

    reconciler: VolumeReconciler | None
    """Volume reconciler, if the node agent is enabled."""

    background: BackgroundTaskManager | None
    """Background task manager, if the node agent is enabled."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the configuration.

        Parameters
        ----------
        config
            volguard configuration.

        Returns
        -------
        ProcessContext
            Shared context for a volguard process.
        """
        http_client = await http_client_dependency()
        kubernetes_client = ApiClient()

        # This logger is used only by process-global singletons. Everything
        # else will use a per-request logger that includes more context about
        # the request.
        logger = structlog.get_logger(__name__)

        slack_client = None
        if config.slack_webhook:
            slack_client = SlackWebhookClient(
                config.slack_webhook.get_secret_value(), config.name, logger
            )

        locks = NamespaceLocks(config.admission.max_namespace_locks)
        registry = CollectorRegistry()
        reconciler = None
        background = None
        if isinstance(config.agent, EnabledAgentConfig) and config.node_name:
            backend = LVMVolumeBackend(
                config.agent.lvm_command,
                resize_filesystem=config.agent.resize_filesystem,
                logger=logger,
            )
            reconciler = VolumeReconciler(
                node=config.node_name,
                pvc_storage=PersistentVolumeClaimStorage(
                    kubernetes_client, logger
                ),
                backend=backend,
                locks=locks,
                kubernetes_timeout=config.kubernetes_timeout,
                resize_timeout=config.agent.resize_timeout,
                logger=logger,
            )
            collector = VolumeGroupCollector(
                node=config.node_name,
                backend=backend,
                registry=registry,
                timeout=config.agent.resize_timeout,
                logger=logger,
            )
            background = BackgroundTaskManager(
                collector=collector,
                reconciler=reconciler,
                metrics_interval=config.agent.metrics_interval,
                reconcile_interval=config.agent.reconcile_interval,
                slack_client=slack_client,
                logger=logger,
            )

        return cls(
            config=config,
            http_client=http_client,
            kubernetes_client=kubernetes_client,
            locks=locks,
            registry=registry,
            slack_client=slack_client,
            reconciler=reconciler,
            background=background,
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the background tasks running."""
        if self.background:
            await self.background.start()

    async def stop(self) -> None:
        """Clean up a process context.

        Called during shutdown, or before recreating the process context using
        a different configuration.
        """
        if self.background:
            await self.background.stop()


class Factory:
    """Build volguard components.

    Uses the contents of a `ProcessContext` to construct the components of
    the application on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger

    def create_admission_engine(self) -> AdmissionEngine:
        """Create a new admission decision engine.

        Returns
        -------
        AdmissionEngine
            Newly-created admission engine.
        """
        return AdmissionEngine(
            config=self._context.config.admission,
            resolver=self.create_resolver(),
            oracle=self.create_capacity_oracle(),
            locks=self._context.locks,
            slack_client=self._context.slack_client,
            logger=self._logger,
        )

    def create_capacity_oracle(self) -> CapacityOracle:
        """Create the capacity oracle selected by the configuration.

        Returns
        -------
        CapacityOracle
            Newly-created capacity oracle.
        """
        config = self._context.config.capacity
        if isinstance(config, PrometheusCapacityConfig):
            client = PrometheusClient(
                config.url, self._context.http_client, self._logger
            )
            return PrometheusCapacityOracle(client, config.query, self._logger)
        return FixedCapacityOracle(config.free_bytes)

    def create_resolver(self) -> ExpansionResolver:
        """Create a new expansion resolver.

        Returns
        -------
        ExpansionResolver
            Newly-created expansion resolver.
        """
        api_client = self._context.kubernetes_client
        return ExpansionResolver(
            cluster_storage=ClusterStorage(api_client, self._logger),
            pod_storage=PodStorage(api_client, self._logger),
            logger=self._logger,
        )

    def set_logger(self, logger: BoundLogger) -> None:
        """Replace the internal logger.

        Used by the context dependency to update the logger for all
        newly-created components when it's rebound with additional context.

        Parameters
        ----------
        logger
            New logger.
        """
        self._logger = logger
