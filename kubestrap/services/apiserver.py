# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from kubestrap.services.base import ServiceHandler
from kubestrap.services.kinds import ServiceKind
from kubestrap.supervisor.health import HealthMessage, expect_ok_body, http_probe

ADMISSION_PLUGINS = (
    "NamespaceLifecycle",
    "LimitRanger",
    "ServiceAccount",
    "DefaultStorageClass",
    "ResourceQuota",
)


class ApiServerHandler(ServiceHandler):
    kind = ServiceKind.KUBE_APISERVER

    @property
    def url(self) -> str:
        return f"https://{self.env.network.url_host}:{self.env.ports.kube_api}"

    def command(self) -> list[str]:
        c = self.credentials
        net = self.env.network
        etcd_url = f"https://{net.url_host}:{self.env.ports.etcd_client}"
        return [
            "--bind-address", net.listen_address,
            "--advertise-address", net.listen_address,
            "--secure-port", str(self.env.ports.kube_api),
            "--etcd-servers", etcd_url,
            "--etcd-cafile", str(c.etcd_ca.cert_path),
            "--etcd-certfile", str(c.etcd_client.cert_path),
            "--etcd-keyfile", str(c.etcd_client.key_path),
            "--client-ca-file", str(c.kube_ca.cert_path),
            "--tls-cert-file", str(c.kube_server.cert_path),
            "--tls-private-key-file", str(c.kube_server.key_path),
            "--kubelet-client-certificate", str(c.kube_client.cert_path),
            "--kubelet-client-key", str(c.kube_client.key_path),
            "--service-cluster-ip-range", net.service_range,
            "--service-account-key-file", str(c.kube_server.cert_path),
            "--service-account-signing-key-file", str(c.kube_server.key_path),
            "--service-account-issuer", "https://kubernetes.default.svc.cluster.local",
            "--authorization-mode", "Node,RBAC",
            "--enable-admission-plugins", ",".join(ADMISSION_PLUGINS),
            "--allow-privileged=true",
        ]

    async def probe(self) -> HealthMessage:
        c = self.credentials
        return await http_probe(
            f"{self.url}/healthz",
            expect_ok_body,
            timeout=self.env.timings.probe_timeout_sec,
            ssl_context=self.ssl_context(
                c.kube_ca.cert_path, c.kube_client.cert_path, c.kube_client.key_path,
            ),
            transport=self.transport,
        )
