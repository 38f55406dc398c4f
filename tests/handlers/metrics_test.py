"""Tests for the volume group metrics route."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from prometheus_client.parser import text_string_to_metric_families

from ..support.config import configure
from ..support.lvm import MockVolumeBackend

GIB = 1024 * 1024 * 1024


def _samples(text: str) -> dict[tuple[str, str], float]:
    return {
        (sample.name, sample.labels.get("node", "")): sample.value
        for family in text_string_to_metric_families(text)
        for sample in family.samples
    }


@pytest.mark.asyncio
async def test_metrics(
    client: AsyncClient, mock_backend: MockVolumeBackend
) -> None:
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert r.headers["Content-Type"].startswith("text/plain")
    assert _samples(r.text) == {}

    mock_backend.add_volume_group_for_test("lvmvg", 100 * GIB, 40 * GIB)
    await configure("agent")
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert _samples(r.text) == {
        ("lvm_vgs_total_capacity", "node-1"): 100 * GIB,
        ("lvm_vgs_total_free", "node-1"): 40 * GIB,
    }
