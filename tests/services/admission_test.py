"""Tests for admission decisions on volume expansions."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from typing import override

import pytest
import structlog
from safir.testing.kubernetes import MockKubernetesApi
from safir.testing.slack import MockSlackWebhook

from volguard.config import AdmissionConfig
from volguard.exceptions import ResourceShortageError
from volguard.factory import Factory
from volguard.models.domain.expansion import (
    DecisionState,
    ExpansionRequest,
    LockMode,
    ResourceKind,
)
from volguard.services.admission import AdmissionEngine
from volguard.services.capacity import CapacityOracle, FixedCapacityOracle
from volguard.services.locks import NamespaceLocks
from volguard.timeout import Timeout

from ..support.constants import TEST_NAMESPACE
from ..support.kubernetes import (
    create_cluster,
    create_cluster_pod,
    create_pod,
    make_admission_request,
    make_cluster,
    make_ops_request,
    make_stateful_set,
)
from ..support.prometheus import MockPrometheus

GIB = 1024 * 1024 * 1024


class SlowCapacityOracle(CapacityOracle):
    """Capacity oracle that never answers in time."""

    @override
    async def _query(self, node: str, timeout: Timeout) -> int:
        await asyncio.sleep(10)
        return 100 * GIB


def _build_engine(
    factory: Factory,
    *,
    oracle: CapacityOracle | None = None,
    locks: NamespaceLocks | None = None,
    **kwargs: object,
) -> AdmissionEngine:
    return AdmissionEngine(
        config=AdmissionConfig.model_validate(kwargs),
        resolver=factory.create_resolver(),
        oracle=oracle or FixedCapacityOracle(100 * GIB),
        locks=locks if locks is not None else NamespaceLocks(),
        slack_client=None,
        logger=structlog.get_logger("volguard"),
    )


@pytest.mark.asyncio
async def test_cluster_insufficient(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
) -> None:
    mock_prometheus.set_free_for_test("node-1", 5 * GIB)
    await create_cluster_pod(
        mock_kubernetes, TEST_NAMESPACE, "db", 0, "node-1"
    )
    old = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "20Gi")

    engine = factory.create_admission_engine()
    decision = await engine.review(make_admission_request(new, old))

    assert decision.state == DecisionState.DENIED
    assert not decision.allowed
    assert not decision.retriable
    assert decision.message == (
        f"Volume expansion of {TEST_NAMESPACE}/db denied, insufficient"
        " storage on node node-1: 5Gi free < 10Gi requested delta"
    )
    assert mock_prometheus.queries == [
        'sum(lvm_vgs_total_free{node="node-1"})'
    ]


@pytest.mark.asyncio
async def test_ops_request_sufficient(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
) -> None:
    mock_prometheus.set_free_for_test("node-1", 50 * GIB)
    await create_cluster(
        mock_kubernetes, make_cluster(TEST_NAMESPACE, "db", "10Gi")
    )
    await create_cluster_pod(
        mock_kubernetes, TEST_NAMESPACE, "db", 0, "node-1"
    )
    ops = make_ops_request(TEST_NAMESPACE, "db-expand", "db", "30Gi")

    engine = factory.create_admission_engine()
    request = make_admission_request(ops, operation="CREATE")
    decision = await engine.review(request)

    assert decision.state == DecisionState.ALLOWED
    assert decision.message is None
    assert len(mock_prometheus.queries) == 1


@pytest.mark.asyncio
async def test_stateful_set_sufficient(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
) -> None:
    mock_prometheus.set_free_for_test("node-2", 5 * GIB)
    labels = {"app": "web"}
    await create_pod(
        mock_kubernetes, TEST_NAMESPACE, "web-0", labels, "node-2"
    )
    old = make_stateful_set(TEST_NAMESPACE, "web", "10Gi")
    new = make_stateful_set(TEST_NAMESPACE, "web", "10Gi", resize="15Gi")

    engine = factory.create_admission_engine()
    decision = await engine.review(make_admission_request(new, old))

    # Free capacity exactly equal to the delta is enough.
    assert decision.state == DecisionState.ALLOWED


@pytest.mark.asyncio
async def test_second_node_insufficient(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
) -> None:
    mock_prometheus.set_free_for_test("node-1", 50 * GIB)
    mock_prometheus.set_free_for_test("node-2", 1 * GIB)
    await create_cluster_pod(
        mock_kubernetes, TEST_NAMESPACE, "db", 0, "node-1"
    )
    await create_cluster_pod(
        mock_kubernetes, TEST_NAMESPACE, "db", 1, "node-2"
    )
    old = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "12Gi")

    engine = factory.create_admission_engine()
    decision = await engine.review(make_admission_request(new, old))

    assert decision.state == DecisionState.DENIED
    assert decision.message
    assert "node node-2: 1Gi free < 2Gi requested" in decision.message


@pytest.mark.asyncio
async def test_prometheus_failure(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
    mock_slack: MockSlackWebhook,
) -> None:
    mock_prometheus.fail_for_test()
    await create_cluster_pod(
        mock_kubernetes, TEST_NAMESPACE, "db", 0, "node-1"
    )
    old = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "20Gi")

    engine = factory.create_admission_engine()
    decision = await engine.review(make_admission_request(new, old))

    assert decision.state == DecisionState.DENIED
    assert decision.retriable
    assert decision.message
    assert decision.message.startswith(
        f"Cannot verify capacity for volume expansion of {TEST_NAMESPACE}/db"
    )
    assert len(mock_slack.messages) == 1


@pytest.mark.asyncio
async def test_no_capacity_data(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
) -> None:
    await create_cluster_pod(
        mock_kubernetes, TEST_NAMESPACE, "db", 0, "node-9"
    )
    old = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "20Gi")

    engine = factory.create_admission_engine()
    decision = await engine.review(make_admission_request(new, old))

    assert decision.state == DecisionState.DENIED
    assert decision.retriable
    assert decision.message
    assert "no data for node node-9" in decision.message


@pytest.mark.asyncio
async def test_shrink(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
) -> None:
    await create_cluster_pod(
        mock_kubernetes, TEST_NAMESPACE, "db", 0, "node-1"
    )
    engine = factory.create_admission_engine()

    old = make_cluster(TEST_NAMESPACE, "db", "20Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    decision = await engine.review(make_admission_request(new, old))
    assert decision.state == DecisionState.ERRORED
    assert not decision.retriable
    assert decision.message == (
        f"Shrinking volumes of Cluster {TEST_NAMESPACE}/db by 10Gi is not"
        " allowed"
    )

    old = make_stateful_set(TEST_NAMESPACE, "web", "20Gi")
    new = make_stateful_set(TEST_NAMESPACE, "web", "20Gi", resize="10Gi")
    decision = await engine.review(make_admission_request(new, old))
    assert decision.state == DecisionState.ALLOWED

    assert mock_prometheus.queries == []


@pytest.mark.asyncio
async def test_shrink_allowed(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    engine = _build_engine(factory, shrinkPolicy={"Cluster": "allow"})
    old = make_cluster(TEST_NAMESPACE, "db", "20Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    decision = await engine.review(make_admission_request(new, old))
    assert decision.state == DecisionState.ALLOWED


@pytest.mark.asyncio
async def test_no_check_needed(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
) -> None:
    await create_cluster_pod(
        mock_kubernetes, TEST_NAMESPACE, "db", 0, "node-1"
    )
    engine = factory.create_admission_engine()
    cluster = make_cluster(TEST_NAMESPACE, "db", "10Gi")

    # Unchanged size.
    request = make_admission_request(cluster, cluster)
    assert (await engine.review(request)).allowed

    # Deletes, connects, and creates of anything but operation requests.
    request = make_admission_request(None, cluster, operation="DELETE")
    assert (await engine.review(request)).allowed
    request = make_admission_request(cluster, operation="CONNECT")
    assert (await engine.review(request)).allowed
    request = make_admission_request(cluster, operation="CREATE")
    assert (await engine.review(request)).allowed

    # Unknown kinds, even if they are malformed.
    request = make_admission_request({"spec": 4}, kind="ConfigMap")
    assert (await engine.review(request)).allowed

    assert mock_prometheus.queries == []


@pytest.mark.asyncio
async def test_no_pods(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_prometheus: MockPrometheus,
) -> None:
    old = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "20Gi")

    engine = factory.create_admission_engine()
    decision = await engine.review(make_admission_request(new, old))

    assert decision.state == DecisionState.ALLOWED
    assert mock_prometheus.queries == []


@pytest.mark.asyncio
async def test_missing_cluster(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    ops = make_ops_request(TEST_NAMESPACE, "db-expand", "db", "30Gi")

    engine = factory.create_admission_engine()
    request = make_admission_request(ops, operation="CREATE")
    decision = await engine.review(request)

    assert decision.state == DecisionState.ERRORED
    assert decision.message == f"Cluster {TEST_NAMESPACE}/db not found"


@pytest.mark.asyncio
async def test_check(factory: Factory) -> None:
    engine = _build_engine(factory, oracle=FixedCapacityOracle(4 * GIB))
    timeout = Timeout("Capacity check", timedelta(seconds=5))

    expansion = ExpansionRequest(
        namespace=TEST_NAMESPACE,
        name="db",
        kind=ResourceKind.CLUSTER,
        delta_bytes=4 * GIB,
        nodes=["node-1", "node-2"],
    )
    await engine.check(expansion, timeout)

    expansion = replace(expansion, delta_bytes=4 * GIB + 1)
    with pytest.raises(ResourceShortageError) as excinfo:
        await engine.check(expansion, timeout)
    assert excinfo.value.node == "node-1"
    assert excinfo.value.free == 4 * GIB
    assert excinfo.value.requested == 4 * GIB + 1

    expansion = replace(expansion, nodes=[])
    await engine.check(expansion, timeout)


@pytest.mark.asyncio
async def test_timeout(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    await create_cluster_pod(
        mock_kubernetes, TEST_NAMESPACE, "db", 0, "node-1"
    )
    timeout = timedelta(milliseconds=100)
    oracle = SlowCapacityOracle()
    engine = _build_engine(factory, oracle=oracle, timeout=timeout)
    old = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "20Gi")

    decision = await engine.review(make_admission_request(new, old))

    assert decision.state == DecisionState.DENIED
    assert decision.retriable
    assert decision.message
    assert "timed out" in decision.message


@pytest.mark.asyncio
async def test_lock_reject(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    locks = NamespaceLocks()
    engine = _build_engine(factory, locks=locks, lockMode="reject")
    old = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "20Gi")
    request = make_admission_request(new, old)

    async with locks.lock(TEST_NAMESPACE):
        decision = await engine.review(request)
    assert decision.state == DecisionState.DENIED
    assert decision.retriable
    assert decision.message == (
        f"Conflicting volume expansion in {TEST_NAMESPACE} already in"
        " progress"
    )

    # Other namespaces are not affected, and the lock is free again.
    async with locks.lock("other", LockMode.REJECT):
        decision = await engine.review(request)
    assert decision.state == DecisionState.ALLOWED


@pytest.mark.asyncio
async def test_lock_blocking(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    locks = NamespaceLocks()
    engine = _build_engine(factory, locks=locks)
    old = make_cluster(TEST_NAMESPACE, "db", "10Gi")
    new = make_cluster(TEST_NAMESPACE, "db", "20Gi")
    request = make_admission_request(new, old)

    async with locks.lock(TEST_NAMESPACE):
        task = asyncio.create_task(engine.review(request))
        await asyncio.sleep(0.1)
        assert not task.done()
    decision = await task
    assert decision.state == DecisionState.ALLOWED
