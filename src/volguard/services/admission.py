"""Admission decisions for volume expansions."""

from __future__ import annotations

from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..config import AdmissionConfig
from ..exceptions import (
    AdmissionDeniedError,
    CapacityQueryError,
    ExpansionValidationError,
    KubernetesError,
    OperationTimeoutError,
    ResourceShortageError,
)
from ..models.domain.expansion import (
    AdmissionDecision,
    AdmissionOperation,
    DecisionState,
    ExpansionRequest,
    ResourceKind,
    ShrinkPolicy,
)
from ..models.v1.admission import AdmissionRequest
from ..timeout import Timeout
from ..units import bytes_to_quantity
from .capacity import CapacityOracle
from .locks import NamespaceLocks
from .resolver import ExpansionResolver

__all__ = ["AdmissionEngine"]


class AdmissionEngine:
    """Decide whether to admit requests that may expand volumes.

    A request moves from received to resolved once the resolver has
    computed its expansion, then to checked once the capacity of every
    affected node has been queried. It ends allowed, denied (insufficient
    capacity, or capacity could not be verified), or errored (the request
    failed validation). Capacity checks fail closed: if the capacity of a
    node cannot be determined, the request is denied as retriable.

    The engine never modifies cluster state.

    Parameters
    ----------
    config
        Admission configuration.
    resolver
        Resolver for the expansion requested by each kind of object.
    oracle
        Source of node free capacity.
    locks
        Per-namespace locks serializing reviews.
    slack_client
        If given, client used to report failed capacity checks.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: AdmissionConfig,
        resolver: ExpansionResolver,
        oracle: CapacityOracle,
        locks: NamespaceLocks,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._resolver = resolver
        self._oracle = oracle
        self._locks = locks
        self._slack = slack_client
        self._logger = logger

    async def review(self, request: AdmissionRequest) -> AdmissionDecision:
        """Review an admission request.

        Parameters
        ----------
        request
            Admission request from the Kubernetes API server.

        Returns
        -------
        AdmissionDecision
            Decision on the request. Denials carry a message naming the
            object and, for capacity failures, the node.
        """
        kind = self._kind_for(request)
        if not kind:
            return AdmissionDecision(state=DecisionState.ALLOWED)
        namespace = request.namespace
        logger = self._logger.bind(
            namespace=namespace,
            name=request.name,
            kind=kind.value,
            operation=request.operation.value,
        )

        timeout = Timeout(
            "Volume expansion review", self._config.timeout, namespace
        )
        try:
            async with timeout.enforce():
                lock = self._locks.lock(namespace, self._config.lock_mode)
                async with lock:
                    await self._evaluate(kind, request, timeout, logger)
        except ExpansionValidationError as e:
            logger.warning("Volume expansion rejected", error=str(e))
            return AdmissionDecision(
                state=DecisionState.ERRORED, message=str(e)
            )
        except AdmissionDeniedError as e:
            logger.warning("Volume expansion denied", error=str(e))
            return AdmissionDecision(
                state=DecisionState.DENIED,
                message=str(e),
                retriable=e.retriable,
            )
        except (
            CapacityQueryError,
            KubernetesError,
            OperationTimeoutError,
        ) as e:
            logger.exception("Cannot verify capacity for volume expansion")
            await self._report(e)
            msg = (
                f"Cannot verify capacity for volume expansion of"
                f" {namespace}/{request.name}: {e!s}"
            )
            return AdmissionDecision(
                state=DecisionState.DENIED, message=msg, retriable=True
            )
        return AdmissionDecision(state=DecisionState.ALLOWED)

    async def check(
        self, expansion: ExpansionRequest, timeout: Timeout
    ) -> None:
        """Check whether the affected nodes have room for an expansion.

        Parameters
        ----------
        expansion
            Expansion to check.
        timeout
            Timeout for the capacity queries.

        Raises
        ------
        CapacityQueryError
            Raised if the capacity of a node could not be determined.
        ExpansionValidationError
            Raised if the expansion shrinks a volume and the shrink policy
            for that kind of object denies shrinks.
        OperationTimeoutError
            Raised if the capacity queries did not complete in time.
        ResourceShortageError
            Raised if any affected node has less free capacity than the
            requested expansion.
        """
        logger = self._logger.bind(
            namespace=expansion.namespace,
            name=expansion.name,
            kind=expansion.kind.value,
            delta=expansion.delta_bytes,
            nodes=expansion.nodes,
        )
        delta = expansion.delta_bytes
        if delta <= 0:
            policy = self._config.shrink_policy_for(expansion.kind)
            if delta < 0 and policy == ShrinkPolicy.DENY:
                msg = (
                    f"Shrinking volumes of {expansion.kind.value}"
                    f" {expansion.namespace}/{expansion.name} by"
                    f" {bytes_to_quantity(-delta)} is not allowed"
                )
                raise ExpansionValidationError(msg)
            logger.info("Volume size not growing, allowing")
            return
        if not expansion.nodes:
            logger.warning("No pods found for volume expansion, allowing")
            return

        for node in expansion.nodes:
            free = await self._oracle.free_capacity(node, timeout)
            if free < delta:
                raise ResourceShortageError(
                    namespace=expansion.namespace,
                    name=expansion.name,
                    node=node,
                    free=free,
                    requested=delta,
                )
        logger.info("Allowing volume expansion")

    async def _evaluate(
        self,
        kind: ResourceKind,
        request: AdmissionRequest,
        timeout: Timeout,
        logger: BoundLogger,
    ) -> None:
        expansion = await self._resolver.resolve(kind, request, timeout)
        if not expansion:
            logger.debug("Request does not change volume size")
            return
        await self.check(expansion, timeout)

    def _kind_for(self, request: AdmissionRequest) -> ResourceKind | None:
        """Determine the kind of a request that needs a capacity check.

        Returns
        -------
        ResourceKind or None
            Kind of the object, or `None` if the request needs no check.
            Deletes never need a check, and creates only for
            ``OpsRequest`` objects.
        """
        try:
            kind = ResourceKind(request.kind.kind)
        except ValueError:
            return None
        match request.operation:
            case AdmissionOperation.UPDATE:
                return kind
            case AdmissionOperation.CREATE:
                return kind if kind == ResourceKind.OPS_REQUEST else None
            case _:
                return None

    async def _report(self, exc: SlackException) -> None:
        if self._slack:
            await self._slack.post_exception(exc)
