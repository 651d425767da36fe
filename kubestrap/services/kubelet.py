# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""The node agent.  Runs privileged, against the local container runtime."""

from __future__ import annotations

from pathlib import Path

from kubestrap.services.base import ServiceHandler, write_yaml
from kubestrap.services.kinds import ServiceKind
from kubestrap.supervisor.health import HealthMessage, expect_ok_body, http_probe

CLUSTER_DOMAIN = "cluster.local"


class KubeletHandler(ServiceHandler):
    kind = ServiceKind.KUBELET
    needs_root = True

    @property
    def config_path(self) -> Path:
        return self.env.workdir / "kubelet.yaml"

    @property
    def root_dir(self) -> Path:
        return self.env.workdir / "kubelet"

    @property
    def static_pod_dir(self) -> Path:
        return self.env.workdir / "staticpods"

    def prepare(self) -> None:
        c = self.credentials
        net = self.env.network
        ports = self.env.ports
        config = {
            "apiVersion": "kubelet.config.k8s.io/v1beta1",
            "kind": "KubeletConfiguration",
            "address": net.listen_address,
            "port": ports.kube_node_api,
            "healthzBindAddress": "127.0.0.1",
            "healthzPort": ports.kubelet_health,
            "staticPodPath": str(self.static_pod_dir),
            "tlsCertFile": str(c.kube_server.cert_path),
            "tlsPrivateKeyFile": str(c.kube_server.key_path),
            "authentication": {
                "x509": {"clientCAFile": str(c.kube_ca.cert_path)},
                "webhook": {"enabled": True},
                "anonymous": {"enabled": False},
            },
            "authorization": {"mode": "Webhook"},
            "clusterDomain": CLUSTER_DOMAIN,
            "clusterDNS": [net.dns_address],
            "failSwapOn": False,
        }
        if self.env.container_runtime_endpoint:
            config["containerRuntimeEndpoint"] = self.env.container_runtime_endpoint
        self.static_pod_dir.mkdir(parents=True, exist_ok=True)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        write_yaml(self.config_path, config)

    def command(self) -> list[str]:
        return [
            "--config", str(self.config_path),
            "--kubeconfig", str(self.kubeconfig),
            "--node-ip", self.env.network.listen_address,
            "--root-dir", str(self.root_dir),
        ]

    async def probe(self) -> HealthMessage:
        return await http_probe(
            f"http://localhost:{self.env.ports.kubelet_health}/healthz",
            expect_ok_body,
            timeout=self.env.timings.probe_timeout_sec,
            transport=self.transport,
        )
