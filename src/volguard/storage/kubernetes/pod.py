"""Storage layer for Kubernetes pod objects."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = ["PodStorage"]


class PodStorage:
    """Storage layer for Kubernetes pod objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger

    async def list_nodes(
        self, namespace: str, labels: dict[str, str], timeout: Timeout
    ) -> list[str]:
        """List the nodes running pods that match a label selector.

        Pods that have not yet been scheduled are ignored.

        Parameters
        ----------
        namespace
            Namespace of the pods.
        labels
            Labels the pods must have. If empty, the result is empty rather
            than every node in the namespace.
        timeout
            Timeout on operation.

        Returns
        -------
        list of str
            Sorted names of the nodes, without duplicates.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        if not labels:
            return []
        selector = ",".join(f"{k}={v}" for k, v in labels.items())
        self._logger.debug(
            "Listing pods", namespace=namespace, label_selector=selector
        )
        try:
            async with timeout.enforce():
                pods = await self._api.list_namespaced_pod(
                    namespace,
                    label_selector=selector,
                    _request_timeout=timeout.left(),
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing pods", e, kind="Pod", namespace=namespace
            ) from e
        nodes = {p.spec.node_name for p in pods.items if p.spec.node_name}
        return sorted(nodes)
