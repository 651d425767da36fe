# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from kubestrap.services.base import ServiceHandler
from kubestrap.services.kinds import ServiceKind
from kubestrap.supervisor.health import HealthMessage, expect_ok_body, http_probe


class ControllerManagerHandler(ServiceHandler):
    kind = ServiceKind.KUBE_CONTROLLER_MANAGER

    def command(self) -> list[str]:
        c = self.credentials
        net = self.env.network
        kubeconfig = str(self.kubeconfig)
        return [
            "--kubeconfig", kubeconfig,
            "--authentication-kubeconfig", kubeconfig,
            "--authorization-kubeconfig", kubeconfig,
            "--bind-address", net.listen_address,
            "--secure-port", str(self.env.ports.controller_manager),
            "--tls-cert-file", str(c.kube_server.cert_path),
            "--tls-private-key-file", str(c.kube_server.key_path),
            "--cluster-cidr", net.pod_range,
            "--allocate-node-cidrs=true",
            "--service-cluster-ip-range", net.service_range,
            "--cluster-signing-cert-file", str(c.kube_ca.cert_path),
            "--cluster-signing-key-file", str(c.kube_ca.key_path),
            "--root-ca-file", str(c.kube_ca.cert_path),
            "--service-account-private-key-file", str(c.kube_server.key_path),
            "--use-service-account-credentials=true",
            "--leader-elect=false",
        ]

    async def probe(self) -> HealthMessage:
        url = f"https://{self.env.network.url_host}:{self.env.ports.controller_manager}/healthz"
        return await http_probe(
            url,
            expect_ok_body,
            timeout=self.env.timings.probe_timeout_sec,
            ssl_context=self.ssl_context(self.credentials.kube_ca.cert_path),
            transport=self.transport,
        )
