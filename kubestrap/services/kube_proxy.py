# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from pathlib import Path

from kubestrap.services.base import ServiceHandler, write_yaml
from kubestrap.services.kinds import ServiceKind
from kubestrap.supervisor.health import HealthMessage, expect_proxy_health, http_probe


class KubeProxyHandler(ServiceHandler):
    kind = ServiceKind.KUBE_PROXY
    needs_root = True

    @property
    def config_path(self) -> Path:
        return self.env.workdir / "kube-proxy.yaml"

    def prepare(self) -> None:
        net = self.env.network
        ports = self.env.ports
        write_yaml(self.config_path, {
            "apiVersion": "kubeproxy.config.k8s.io/v1alpha1",
            "kind": "KubeProxyConfiguration",
            "bindAddress": net.listen_address,
            "clientConnection": {"kubeconfig": str(self.kubeconfig)},
            "clusterCIDR": net.cluster_ip_range,
            "healthzBindAddress": f"{net.url_host}:{ports.proxy_health}",
            "metricsBindAddress": f"{net.url_host}:{ports.proxy_metrics}",
            "mode": "iptables",
        })

    def command(self) -> list[str]:
        return ["--config", str(self.config_path)]

    async def probe(self) -> HealthMessage:
        url = f"http://{self.env.network.url_host}:{self.env.ports.proxy_health}/healthz"
        return await http_probe(
            url,
            expect_proxy_health,
            timeout=self.env.timings.probe_timeout_sec,
            transport=self.transport,
        )
