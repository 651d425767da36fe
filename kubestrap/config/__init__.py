# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from kubestrap.config.models import (
    KubestrapConfig,
    NetworkConfig,
    PortConfig,
    TimingConfig,
    get_config_path,
    load_config,
    save_config,
)

__all__ = [
    "KubestrapConfig",
    "NetworkConfig",
    "PortConfig",
    "TimingConfig",
    "get_config_path",
    "load_config",
    "save_config",
]
