# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Single-member etcd cluster backing the API server."""

from __future__ import annotations

from kubestrap.services.base import ServiceHandler
from kubestrap.services.kinds import ServiceKind
from kubestrap.supervisor.health import HealthMessage, expect_etcd_health, http_probe

MEMBER_NAME = "kubestrap"


class EtcdHandler(ServiceHandler):
    kind = ServiceKind.ETCD

    @property
    def client_url(self) -> str:
        return f"https://{self.env.network.url_host}:{self.env.ports.etcd_client}"

    @property
    def peer_url(self) -> str:
        return f"https://{self.env.network.url_host}:{self.env.ports.etcd_peer}"

    def command(self) -> list[str]:
        c = self.credentials
        return [
            "--name", MEMBER_NAME,
            "--data-dir", str(self.env.workdir),
            "--listen-client-urls", self.client_url,
            "--advertise-client-urls", self.client_url,
            "--listen-peer-urls", self.peer_url,
            "--initial-advertise-peer-urls", self.peer_url,
            "--initial-cluster", f"{MEMBER_NAME}={self.peer_url}",
            "--initial-cluster-state", "new",
            "--cert-file", str(c.etcd_server.cert_path),
            "--key-file", str(c.etcd_server.key_path),
            "--trusted-ca-file", str(c.etcd_ca.cert_path),
            "--client-cert-auth",
            "--peer-cert-file", str(c.etcd_server.cert_path),
            "--peer-key-file", str(c.etcd_server.key_path),
            "--peer-trusted-ca-file", str(c.etcd_ca.cert_path),
            "--peer-client-cert-auth",
        ]

    async def probe(self) -> HealthMessage:
        c = self.credentials
        return await http_probe(
            f"{self.client_url}/health",
            expect_etcd_health,
            timeout=self.env.timings.probe_timeout_sec,
            ssl_context=self.ssl_context(
                c.etcd_ca.cert_path, c.etcd_client.cert_path, c.etcd_client.key_path,
            ),
            transport=self.transport,
        )
