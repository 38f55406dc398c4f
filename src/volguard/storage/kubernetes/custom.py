"""Storage layer for KubeBlocks custom objects."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...constants import KUBEBLOCKS_GROUP, KUBEBLOCKS_VERSION
from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = ["ClusterStorage"]


class ClusterStorage:
    """Read KubeBlocks ``Cluster`` objects.

    Objects are returned undecoded, since the caller decides which parts of
    the spec it needs and how to report decoding failures.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    plural = "clusters"
    kind = "Cluster"

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CustomObjectsApi(api_client)
        self._logger = logger

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> dict[str, Any] | None:
        """Read a cluster.

        Parameters
        ----------
        name
            Name of the cluster.
        namespace
            Namespace of the cluster.
        timeout
            Timeout on operation.

        Returns
        -------
        dict or None
            Cluster object, or `None` if there is no such cluster.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug("Reading cluster", name=name, namespace=namespace)
        try:
            async with timeout.enforce():
                return await self._api.get_namespaced_custom_object(
                    KUBEBLOCKS_GROUP,
                    KUBEBLOCKS_VERSION,
                    namespace,
                    self.plural,
                    name,
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                f"Error reading {self.kind}",
                e,
                kind=self.kind,
                namespace=namespace,
                name=name,
            ) from e
