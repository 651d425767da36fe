# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Cluster components and the registry mapping each kind to its handler."""

from __future__ import annotations

from kubestrap.pki import ClusterCredentials
from kubestrap.services.apiserver import ApiServerHandler
from kubestrap.services.base import ExecutionEnvironment, ServiceHandler
from kubestrap.services.controller_manager import ControllerManagerHandler
from kubestrap.services.etcd import EtcdHandler
from kubestrap.services.kinds import STARTUP_ORDER, ServiceKind
from kubestrap.services.kube_proxy import KubeProxyHandler
from kubestrap.services.kubelet import KubeletHandler
from kubestrap.services.scheduler import SchedulerHandler

HANDLERS: dict[ServiceKind, type[ServiceHandler]] = {
    ServiceKind.ETCD: EtcdHandler,
    ServiceKind.KUBE_APISERVER: ApiServerHandler,
    ServiceKind.KUBE_CONTROLLER_MANAGER: ControllerManagerHandler,
    ServiceKind.KUBE_SCHEDULER: SchedulerHandler,
    ServiceKind.KUBELET: KubeletHandler,
    ServiceKind.KUBE_PROXY: KubeProxyHandler,
}

_missing = set(ServiceKind) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler registered for: {sorted(k.value for k in _missing)}")

# Working directory of each component, relative to the base dir
WORKDIRS: dict[ServiceKind, str] = {
    ServiceKind.ETCD: "etcddata",
    ServiceKind.KUBE_APISERVER: "kube",
    ServiceKind.KUBE_CONTROLLER_MANAGER: "kube",
    ServiceKind.KUBE_SCHEDULER: "kubesched",
    ServiceKind.KUBELET: "kube",
    ServiceKind.KUBE_PROXY: "kube",
}


def build_service(
    kind: ServiceKind, env: ExecutionEnvironment, credentials: ClusterCredentials,
) -> ServiceHandler:
    """Instantiate the handler registered for *kind*."""
    return HANDLERS[kind](env, credentials)


__all__ = [
    "HANDLERS",
    "STARTUP_ORDER",
    "WORKDIRS",
    "ExecutionEnvironment",
    "ServiceHandler",
    "ServiceKind",
    "build_service",
]
