# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Client kubeconfig generation and reading."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from kubestrap.exceptions import ConfigError
from kubestrap.pki import ClusterCredentials

logger = logging.getLogger(__name__)

CLUSTER_NAME = "kubestrap"
USER_NAME = "kubestrap-admin"


@dataclass(frozen=True)
class KubeconfigInfo:
    """The parts of a kubeconfig the control-plane client needs."""

    server: str
    ca_cert: Path
    client_cert: Path
    client_key: Path


def write_kubeconfig(path: Path, server_url: str, credentials: ClusterCredentials) -> Path:
    """Write a kubeconfig referencing the kube CA and client pair by path."""
    data = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": CLUSTER_NAME,
            "cluster": {
                "server": server_url,
                "certificate-authority": str(credentials.kube_ca.cert_path),
            },
        }],
        "users": [{
            "name": USER_NAME,
            "user": {
                "client-certificate": str(credentials.kube_client.cert_path),
                "client-key": str(credentials.kube_client.key_path),
            },
        }],
        "contexts": [{
            "name": CLUSTER_NAME,
            "context": {"cluster": CLUSTER_NAME, "user": USER_NAME},
        }],
        "current-context": CLUSTER_NAME,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    os.chmod(path, 0o600)
    logger.info("Kubeconfig written to %s", path)
    return path


def read_kubeconfig(path: Path) -> KubeconfigInfo:
    """Resolve the current context of *path*.

    Raises:
        ConfigError: If the file is unreadable or lacks a usable context.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read kubeconfig {path}: {e}") from e

    try:
        context_name = data["current-context"]
        context = _named(data["contexts"], context_name)["context"]
        cluster = _named(data["clusters"], context["cluster"])["cluster"]
        user = _named(data["users"], context["user"])["user"]
        return KubeconfigInfo(
            server=cluster["server"],
            ca_cert=Path(cluster["certificate-authority"]),
            client_cert=Path(user["client-certificate"]),
            client_key=Path(user["client-key"]),
        )
    except (KeyError, TypeError) as e:
        raise ConfigError(f"Incomplete kubeconfig {path}: missing {e}") from e


def _named(entries: list[dict], name: str) -> dict:
    for entry in entries:
        if entry.get("name") == name:
            return entry
    raise KeyError(name)
