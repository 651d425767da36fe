# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of Kubestrap, licensed under Apache-2.0.
# See LICENSE for the full license text.

"""Centralized path resolution for Kubestrap.

All modules import directory paths from here instead of computing them ad-hoc.
Runtime data directory can be overridden via KUBESTRAP_DATA_DIR environment variable.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from kubestrap.exceptions import ConfigError

logger = logging.getLogger(__name__)

# Default runtime data directory
_DEFAULT_DATA_DIR = Path.home() / ".kubestrap"

# State directories created below the base dir before anything starts
STATE_DIRS: tuple[str, ...] = (
    "kube",
    "kube/kubelet",
    "kube/staticpods",
    "etcdtls",
    "kubetls",
    "kubesched",
    "etcddata",
)


def get_data_dir() -> Path:
    """Return the runtime data directory, respecting KUBESTRAP_DATA_DIR env var."""
    env_val = os.environ.get("KUBESTRAP_DATA_DIR")
    if env_val:
        return Path(env_val).expanduser().resolve()
    return _DEFAULT_DATA_DIR


def get_log_dir() -> Path:
    return get_data_dir() / "logs"


def get_pid_file() -> Path:
    return get_data_dir() / "kubestrap.pid"


def kubeconfig_path(base_dir: Path) -> Path:
    return base_dir / "kube" / "kubeconfig"


def prepare_directories(base_dir: Path) -> None:
    """Create the state layout under *base_dir*.

    Everything below ``kube/kubelet`` is world-readable (the kubelet runs
    as root and hands paths to containers), the rest is group-only.

    Raises:
        ConfigError: If a directory cannot be created.
    """
    for rel in ("", *STATE_DIRS):
        path = base_dir / rel
        try:
            path.mkdir(parents=True, exist_ok=True)
            path.chmod(0o755 if rel.startswith("kube/kubelet") else 0o770)
        except OSError as e:
            raise ConfigError(f"Cannot create state directory {path}: {e}") from e
    logger.debug("State directories ready under %s", base_dir)
