# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from enum import Enum


class ServiceKind(Enum):
    """Components of the cluster, in the order they must start."""

    ETCD = "etcd"
    KUBE_APISERVER = "kube-apiserver"
    KUBE_CONTROLLER_MANAGER = "kube-controller-manager"
    KUBE_SCHEDULER = "kube-scheduler"
    KUBELET = "kubelet"
    KUBE_PROXY = "kube-proxy"

    @property
    def hyperkube_subcommand(self) -> str | None:
        """Subcommand when run from the all-in-one hyperkube binary."""
        return None if self is ServiceKind.ETCD else self.value


STARTUP_ORDER: tuple[ServiceKind, ...] = tuple(ServiceKind)
