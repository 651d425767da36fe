# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from kubestrap.kube.client import ControlPlane, ControlPlaneClient
from kubestrap.kube.kubeconfig import read_kubeconfig, write_kubeconfig

__all__ = ["ControlPlane", "ControlPlaneClient", "read_kubeconfig", "write_kubeconfig"]
