"""Client for the Prometheus HTTP query API."""

from __future__ import annotations

import math

from httpx import AsyncClient, HTTPError
from structlog.stdlib import BoundLogger

from ..exceptions import CapacityQueryError
from ..timeout import Timeout

__all__ = ["PrometheusClient"]


class PrometheusClient:
    """Run instant queries against Prometheus.

    Parameters
    ----------
    url
        Base URL of the Prometheus server.
    http_client
        Shared HTTP client.
    logger
        Logger to use.
    """

    def __init__(
        self, url: str, http_client: AsyncClient, logger: BoundLogger
    ) -> None:
        self._url = url.rstrip("/") + "/api/v1/query"
        self._http_client = http_client
        self._logger = logger

    async def query_scalar(
        self, query: str, timeout: Timeout, *, node: str | None = None
    ) -> float:
        """Run an instant query and return the value of the first series.

        Parameters
        ----------
        query
            PromQL query, which must return an instant vector.
        timeout
            Timeout for the query.
        node
            Node the query is about, for error reporting.

        Returns
        -------
        float
            Value of the first series in the result.

        Raises
        ------
        CapacityQueryError
            Raised if Prometheus could not be reached, returned an error, or
            returned no series.
        OperationTimeoutError
            Raised if the query did not complete within the timeout.
        """
        self._logger.debug("Querying Prometheus", query=query)
        try:
            async with timeout.enforce():
                r = await self._http_client.get(
                    self._url,
                    params={"query": query},
                    timeout=timeout.left(),
                )
            r.raise_for_status()
            data = r.json()
        except HTTPError as e:
            msg = f"Cannot query Prometheus: {type(e).__name__}: {e!s}"
            raise CapacityQueryError(msg, node) from e
        except ValueError as e:
            msg = f"Invalid response from Prometheus: {e!s}"
            raise CapacityQueryError(msg, node) from e

        if data.get("status") != "success":
            error = data.get("error", "unknown error")
            raise CapacityQueryError(f"Prometheus query failed: {error}", node)
        result = data.get("data", {})
        if result.get("resultType") != "vector":
            result_type = result.get("resultType")
            msg = f"Invalid Prometheus result type {result_type}"
            raise CapacityQueryError(msg, node)
        series = result.get("result", [])
        if not series:
            msg = f"Prometheus query returned no data for node {node}"
            raise CapacityQueryError(msg, node)
        try:
            value = float(series[0]["value"][1])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            msg = f"Invalid Prometheus sample: {series[0]!s}"
            raise CapacityQueryError(msg, node) from e
        if not math.isfinite(value):
            msg = f"Prometheus returned {value} for node {node}"
            raise CapacityQueryError(msg, node)
        return value
