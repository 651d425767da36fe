# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0
"""Global test fixtures for Kubestrap.

Provides filesystem isolation, fast supervisor timings and fake TLS
material for all test modules.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from kubestrap.config import TimingConfig
from kubestrap.pki import FileCredentialProvider
from tests.helpers.filesystem import create_tls_layout


@pytest.fixture(autouse=True)
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect ``KUBESTRAP_DATA_DIR`` to a temp directory for every test."""
    d = tmp_path / "data"
    d.mkdir()
    monkeypatch.setenv("KUBESTRAP_DATA_DIR", str(d))
    monkeypatch.delenv("NOTIFY_SOCKET", raising=False)
    return d


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    d = tmp_path / "cluster"
    d.mkdir()
    return d


@pytest.fixture
def fast_timings() -> TimingConfig:
    """Timings short enough for unit tests."""
    return TimingConfig(
        startup_retries=3,
        startup_retry_interval_sec=0.01,
        health_interval_sec=0.01,
        probe_timeout_sec=0.5,
        unhealthy_threshold=10,
        node_ready_timeout_sec=2.0,
        drain_timeout_sec=1.0,
        grace_period_sec=2.0,
    )


@pytest.fixture
def credentials(base_dir: Path):
    """ClusterCredentials backed by placeholder files under *base_dir*."""
    create_tls_layout(base_dir)
    return FileCredentialProvider().load(base_dir, "127.0.0.1", "10.233.0.1")
