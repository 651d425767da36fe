# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Certificate material the cluster components authenticate with.

Two independent trust domains are used: one for etcd (server and the
API server as its only client) and one for Kubernetes itself.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from kubestrap.exceptions import CredentialError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CertPair:
    """A certificate and its private key."""

    cert_path: Path
    key_path: Path

    def missing(self) -> list[Path]:
        return [p for p in (self.cert_path, self.key_path) if not p.is_file()]


@dataclass
class ClusterCredentials:
    """Everything the services need to talk TLS to each other."""

    etcd_ca: CertPair
    etcd_server: CertPair
    etcd_client: CertPair
    kube_ca: CertPair
    kube_server: CertPair
    kube_client: CertPair
    kubeconfig: Path | None = None  # set once the client kubeconfig exists

    def pairs(self) -> dict[str, CertPair]:
        return {
            "etcd_ca": self.etcd_ca,
            "etcd_server": self.etcd_server,
            "etcd_client": self.etcd_client,
            "kube_ca": self.kube_ca,
            "kube_server": self.kube_server,
            "kube_client": self.kube_client,
        }


class CredentialProvider(ABC):
    """Produces :class:`ClusterCredentials` for a state directory."""

    @abstractmethod
    def load(self, base_dir: Path, listen_address: str, service_address: str) -> ClusterCredentials:
        """Return credentials valid for *listen_address* and *service_address*.

        Raises:
            CredentialError: If the material cannot be provided.
        """


def _domain(directory: Path) -> tuple[CertPair, CertPair, CertPair]:
    return tuple(  # type: ignore[return-value]
        CertPair(directory / f"{name}.crt", directory / f"{name}.key")
        for name in ("ca", "server", "client")
    )


class FileCredentialProvider(CredentialProvider):
    """Uses pre-issued files from ``etcdtls/`` and ``kubetls/``.

    Each directory holds ``ca``, ``server`` and ``client`` as ``.crt`` /
    ``.key`` pairs.  The server certificates must already carry the listen
    and service addresses as SANs; they are not inspected here.
    """

    def load(self, base_dir: Path, listen_address: str, service_address: str) -> ClusterCredentials:
        etcd_ca, etcd_server, etcd_client = _domain(base_dir / "etcdtls")
        kube_ca, kube_server, kube_client = _domain(base_dir / "kubetls")
        creds = ClusterCredentials(
            etcd_ca=etcd_ca,
            etcd_server=etcd_server,
            etcd_client=etcd_client,
            kube_ca=kube_ca,
            kube_server=kube_server,
            kube_client=kube_client,
        )

        missing = [str(p) for pair in creds.pairs().values() for p in pair.missing()]
        if missing:
            raise CredentialError(
                "Missing TLS material (expected for %s / %s): %s"
                % (listen_address, service_address, ", ".join(missing))
            )
        logger.info("Loaded TLS material from %s", base_dir)
        return creds
