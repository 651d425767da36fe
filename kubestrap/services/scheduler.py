# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from pathlib import Path

from kubestrap.services.base import ServiceHandler, write_yaml
from kubestrap.services.kinds import ServiceKind
from kubestrap.supervisor.health import HealthMessage, expect_ok_body, http_probe


class SchedulerHandler(ServiceHandler):
    kind = ServiceKind.KUBE_SCHEDULER

    @property
    def config_path(self) -> Path:
        return self.env.workdir / "kube-scheduler.yaml"

    def prepare(self) -> None:
        write_yaml(self.config_path, {
            "apiVersion": "kubescheduler.config.k8s.io/v1",
            "kind": "KubeSchedulerConfiguration",
            "clientConnection": {"kubeconfig": str(self.kubeconfig)},
            "leaderElection": {"leaderElect": False},
        })

    def command(self) -> list[str]:
        c = self.credentials
        kubeconfig = str(self.kubeconfig)
        return [
            "--config", str(self.config_path),
            "--authentication-kubeconfig", kubeconfig,
            "--authorization-kubeconfig", kubeconfig,
            "--bind-address", self.env.network.listen_address,
            "--secure-port", str(self.env.ports.scheduler_health),
            "--tls-cert-file", str(c.kube_server.cert_path),
            "--tls-private-key-file", str(c.kube_server.key_path),
        ]

    async def probe(self) -> HealthMessage:
        url = f"https://{self.env.network.url_host}:{self.env.ports.scheduler_health}/healthz"
        return await http_probe(
            url,
            expect_ok_body,
            timeout=self.env.timings.probe_timeout_sec,
            ssl_context=self.ssl_context(self.credentials.kube_ca.cert_path),
            transport=self.transport,
        )
