"""Tests for reconciling logical volume sizes with their claims."""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import AsyncIterator
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from kubernetes_asyncio.client import (
    ApiException,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimList,
)
from safir.dependencies.http_client import http_client_dependency
from safir.testing.kubernetes import MockKubernetesApi

from volguard.config import EnabledAgentConfig
from volguard.exceptions import (
    KubernetesError,
    OperationTimeoutError,
    VolumeBackendError,
)
from volguard.factory import ProcessContext
from volguard.models.domain.expansion import LockMode
from volguard.services.reconciler import VolumeReconciler

from ..support.config import configure
from ..support.constants import TEST_NAMESPACE
from ..support.kubernetes import make_claim
from ..support.lvm import MockVolumeBackend

GIB = 1024 * 1024 * 1024


@pytest_asyncio.fixture
async def context(
    mock_backend: MockVolumeBackend, mock_kubernetes: MockKubernetesApi
) -> AsyncIterator[ProcessContext]:
    config = await configure("agent")
    context = await ProcessContext.from_config(config)
    try:
        yield context
    finally:
        await context.aclose()
        await http_client_dependency.aclose()


@pytest.fixture
def reconciler(context: ProcessContext) -> VolumeReconciler:
    assert context.reconciler
    return context.reconciler


def set_claims(
    mock_kubernetes: MockKubernetesApi, claims: list[V1PersistentVolumeClaim]
) -> None:
    mock = AsyncMock(return_value=V1PersistentVolumeClaimList(items=claims))
    mock_kubernetes.list_persistent_volume_claim_for_all_namespaces = mock


@pytest.mark.asyncio
async def test_reconcile(
    reconciler: VolumeReconciler,
    mock_backend: MockVolumeBackend,
    mock_kubernetes: MockKubernetesApi,
) -> None:
    set_claims(
        mock_kubernetes,
        [
            make_claim(
                TEST_NAMESPACE,
                "data-db-mysql-0",
                volume="pvc-a",
                node="node-1",
                requested="20Gi",
                capacity="20Gi",
            ),
            make_claim(
                TEST_NAMESPACE,
                "data-db-mysql-1",
                volume="pvc-b",
                node="node-1",
                requested="20Gi",
                capacity="20Gi",
            ),
        ],
    )
    mock_backend.add_volume_for_test("pvc-a", 10 * GIB)
    mock_backend.add_volume_for_test("pvc-b", 20 * GIB)
    mock_backend.add_volume_for_test("unrelated", 1 * GIB)

    assert await reconciler.reconcile() == ["pvc-a"]
    assert mock_backend.resizes == [("pvc-a", 20 * GIB)]
    assert mock_backend.get_size_for_test("pvc-a") == 20 * GIB
    assert mock_backend.get_size_for_test("pvc-b") == 20 * GIB

    # A second pass has nothing to do.
    assert await reconciler.reconcile() == []
    assert len(mock_backend.resizes) == 1


@pytest.mark.asyncio
async def test_skipped(
    reconciler: VolumeReconciler,
    mock_backend: MockVolumeBackend,
    mock_kubernetes: MockKubernetesApi,
) -> None:
    set_claims(
        mock_kubernetes,
        [
            # Expansion in progress.
            make_claim(
                TEST_NAMESPACE,
                "expanding",
                volume="pvc-a",
                node="node-1",
                requested="30Gi",
                capacity="20Gi",
            ),
            # Not yet bound.
            make_claim(
                TEST_NAMESPACE,
                "pending",
                volume="pvc-b",
                node="node-1",
                requested="20Gi",
                capacity="20Gi",
                phase="Pending",
            ),
            # On another node.
            make_claim(
                TEST_NAMESPACE,
                "elsewhere",
                volume="pvc-c",
                node="node-2",
                requested="20Gi",
                capacity="20Gi",
            ),
            # Never scheduled.
            make_claim(
                TEST_NAMESPACE,
                "unscheduled",
                volume="pvc-d",
                node=None,
                requested="20Gi",
                capacity="20Gi",
            ),
            # Invalid size.
            make_claim(
                TEST_NAMESPACE,
                "invalid",
                volume="pvc-e",
                node="node-1",
                requested="lots",
                capacity="lots",
            ),
            # Logical volume larger than the claim.
            make_claim(
                TEST_NAMESPACE,
                "larger",
                volume="pvc-f",
                node="node-1",
                requested="20Gi",
                capacity="20Gi",
            ),
            # Logical volume reporting no size.
            make_claim(
                TEST_NAMESPACE,
                "empty",
                volume="pvc-g",
                node="node-1",
                requested="20Gi",
                capacity="20Gi",
            ),
        ],
    )
    for name in ("pvc-a", "pvc-b", "pvc-c", "pvc-d", "pvc-e"):
        mock_backend.add_volume_for_test(name, 10 * GIB)
    mock_backend.add_volume_for_test("pvc-f", 30 * GIB)
    mock_backend.add_volume_for_test("pvc-g", 0)

    assert await reconciler.reconcile() == []
    assert mock_backend.resizes == []


@pytest.mark.asyncio
async def test_resize_failure(
    reconciler: VolumeReconciler,
    mock_backend: MockVolumeBackend,
    mock_kubernetes: MockKubernetesApi,
) -> None:
    set_claims(
        mock_kubernetes,
        [
            make_claim(
                TEST_NAMESPACE,
                f"data-db-mysql-{i}",
                volume=f"pvc-{i}",
                node="node-1",
                requested="20Gi",
                capacity="20Gi",
            )
            for i in range(2)
        ],
    )
    mock_backend.add_volume_for_test("pvc-0", 10 * GIB)
    mock_backend.add_volume_for_test("pvc-1", 10 * GIB)
    mock_backend.fail_resize_for_test("pvc-0")

    with pytest.raises(VolumeBackendError, match="Insufficient free space"):
        await reconciler.reconcile()
    assert mock_backend.resizes == []
    assert mock_backend.get_size_for_test("pvc-1") == 10 * GIB


@pytest.mark.asyncio
async def test_kubernetes_failure(
    reconciler: VolumeReconciler,
    mock_backend: MockVolumeBackend,
    mock_kubernetes: MockKubernetesApi,
) -> None:
    error = ApiException(status=500, reason="Internal Server Error")
    mock = AsyncMock(side_effect=error)
    mock_kubernetes.list_persistent_volume_claim_for_all_namespaces = mock
    mock_backend.add_volume_for_test("pvc-0", 10 * GIB)

    with pytest.raises(KubernetesError) as excinfo:
        await reconciler.reconcile()
    assert excinfo.value.status == 500
    assert mock_backend.resizes == []


@pytest.mark.asyncio
async def test_namespace_lock(
    context: ProcessContext,
    reconciler: VolumeReconciler,
    mock_backend: MockVolumeBackend,
    mock_kubernetes: MockKubernetesApi,
) -> None:
    set_claims(
        mock_kubernetes,
        [
            make_claim(
                TEST_NAMESPACE,
                "data-db-mysql-0",
                volume="pvc-a",
                node="node-1",
                requested="20Gi",
                capacity="20Gi",
            )
        ],
    )
    mock_backend.add_volume_for_test("pvc-a", 10 * GIB)

    async with context.locks.lock(TEST_NAMESPACE):
        task = asyncio.create_task(reconciler.reconcile())
        await asyncio.sleep(0.1)
        assert not task.done()
        assert mock_backend.resizes == []
    assert await task == ["pvc-a"]


@pytest.mark.asyncio
async def test_resize_timeout(
    tmp_path: Path, mock_kubernetes: MockKubernetesApi
) -> None:
    volumes = [
        {"lv_name": f"pvc-{i}", "vg_name": "lvmvg", "lv_size": str(10 * GIB)}
        for i in range(2)
    ]
    report = {"report": [{"lv": volumes}]}
    (tmp_path / "lvs.json").write_text(json.dumps(report))
    lvm = tmp_path / "lvm"
    lvm.write_text(
        "#!/bin/sh\n"
        f'echo "$@" >> "{tmp_path}/calls"\n'
        'case "$1" in\n'
        f'  lvs) cat "{tmp_path}/lvs.json" ;;\n'
        f'  lvextend) echo $$ > "{tmp_path}/pid"; exec sleep 10 ;;\n'
        "esac\n"
    )
    lvm.chmod(0o755)
    set_claims(
        mock_kubernetes,
        [
            make_claim(
                TEST_NAMESPACE,
                f"data-db-mysql-{i}",
                volume=f"pvc-{i}",
                node="node-1",
                requested="20Gi",
                capacity="20Gi",
            )
            for i in range(2)
        ],
    )
    config = await configure("agent")
    assert isinstance(config.agent, EnabledAgentConfig)
    config.agent.lvm_command = lvm
    config.agent.resize_timeout = timedelta(seconds=1)
    context = await ProcessContext.from_config(config)
    assert context.reconciler

    try:
        with pytest.raises(OperationTimeoutError):
            await context.reconciler.reconcile()

        # Only the first volume was attempted, and its lvextend is gone.
        calls = (tmp_path / "calls").read_text().splitlines()
        assert [c for c in calls if c.startswith("lvextend")] == [
            f"lvextend -L {20 * GIB}b -r lvmvg/pvc-0"
        ]
        pid = int((tmp_path / "pid").read_text())
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

        # The namespace lock was released.
        async with context.locks.lock(TEST_NAMESPACE, LockMode.REJECT):
            pass
    finally:
        await context.aclose()
        await http_client_dependency.aclose()
