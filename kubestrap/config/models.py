# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of Kubestrap, licensed under Apache-2.0.
# See LICENSE for the full license text.

"""Central configuration module for Kubestrap.

Defines Pydantic models for config.json and provides load / save helpers.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from kubestrap.exceptions import ConfigError

logger = logging.getLogger("kubestrap.config")

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class NetworkConfig(BaseModel):
    """Addresses and ranges the cluster is bound to."""

    listen_address: str = "127.0.0.1"
    pod_range: str = "10.233.64.0/19"
    service_range: str = "10.233.0.0/19"

    @field_validator("listen_address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        ipaddress.ip_address(value)
        return value

    @field_validator("pod_range", "service_range")
    @classmethod
    def _validate_range(cls, value: str) -> str:
        return str(ipaddress.ip_network(value, strict=False))

    @model_validator(mode="after")
    def _validate_disjoint(self) -> NetworkConfig:
        pods = ipaddress.ip_network(self.pod_range)
        services = ipaddress.ip_network(self.service_range)
        if pods.version != services.version:
            raise ValueError("pod_range and service_range must use the same IP version")
        if pods.overlaps(services):
            raise ValueError(
                f"pod_range ({pods}) and service_range ({services}) must not overlap"
            )
        return self

    @property
    def url_host(self) -> str:
        """``listen_address`` in the form it takes inside a URL."""
        if ipaddress.ip_address(self.listen_address).version == 6:
            return f"[{self.listen_address}]"
        return self.listen_address

    @property
    def service_address(self) -> str:
        """First host of the service network, reserved for the API service."""
        return str(ipaddress.ip_network(self.service_range).network_address + 1)

    @property
    def dns_address(self) -> str:
        """Second host of the service network, reserved for cluster DNS."""
        return str(ipaddress.ip_network(self.service_range).network_address + 2)

    @property
    def cluster_ip_range(self) -> str:
        """Smallest network containing both the pod and the service range."""
        pods = ipaddress.ip_network(self.pod_range)
        services = ipaddress.ip_network(self.service_range)
        combined = pods
        while not (services.subnet_of(combined)):
            combined = combined.supernet()
        return str(combined)


class PortConfig(BaseModel):
    """Ports, laid out consecutively from ``base``."""

    base: int = 7000

    @field_validator("base")
    @classmethod
    def _validate_base(cls, value: int) -> int:
        if not 1 <= value <= 65535 - 8:
            raise ValueError(f"base port out of range: {value}")
        return value

    @property
    def etcd_client(self) -> int:
        return self.base

    @property
    def etcd_peer(self) -> int:
        return self.base + 1

    @property
    def kube_api(self) -> int:
        return self.base + 2

    @property
    def kube_node_api(self) -> int:
        return self.base + 3

    @property
    def controller_manager(self) -> int:
        return self.base + 4

    @property
    def kubelet_health(self) -> int:
        return self.base + 5

    @property
    def proxy_health(self) -> int:
        return self.base + 6

    @property
    def proxy_metrics(self) -> int:
        return self.base + 7

    @property
    def scheduler_health(self) -> int:
        return self.base + 8


class TimingConfig(BaseModel):
    """Fixed deadlines and budgets of the supervisor."""

    startup_retries: int = 8                  # health-gate attempts per service
    startup_retry_interval_sec: float = 1.0   # sleep before each attempt
    health_interval_sec: float = 3.0          # steady-state probe interval
    probe_timeout_sec: float = 2.0            # per-probe HTTP timeout
    unhealthy_threshold: int = 10             # consecutive failures before abort
    node_ready_timeout_sec: float = 300.0
    drain_timeout_sec: float = 60.0
    grace_period_sec: float = 7.0             # wait after stopping everything

    @model_validator(mode="after")
    def _validate_positive(self) -> TimingConfig:
        if self.startup_retries < 1 or self.unhealthy_threshold < 1:
            raise ValueError("startup_retries and unhealthy_threshold must be >= 1")
        return self


class KubestrapConfig(BaseModel):
    """Root configuration model."""

    base_dir: Path = Path.home() / ".kubestrap" / "cluster"
    extra_bin_dir: Path | None = None
    sudo_method: str | None = "sudo"
    container_runtime_endpoint: str = "unix:///run/containerd/containerd.sock"
    log_level: str = "INFO"
    verbose: bool = False
    network: NetworkConfig = NetworkConfig()
    ports: PortConfig = PortConfig()
    timings: TimingConfig = TimingConfig()


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def get_config_path(data_dir: Path | None = None) -> Path:
    """Return the path to config.json inside *data_dir*.

    If *data_dir* is not given, it is resolved via ``kubestrap.paths.get_data_dir``
    (imported lazily to avoid circular imports).
    """
    if data_dir is None:
        from kubestrap.paths import get_data_dir

        data_dir = get_data_dir()
    return data_dir / "config.json"


# ---------------------------------------------------------------------------
# Load / Save
# ---------------------------------------------------------------------------


def load_config(path: Path | None = None) -> KubestrapConfig:
    """Load configuration from disk.

    When the file does not exist the default configuration is returned.

    Raises:
        ConfigError: If the file exists but is not valid.
    """
    if path is None:
        path = get_config_path()

    if not path.is_file():
        logger.info("Config file not found at %s; using defaults", path)
        return KubestrapConfig()

    logger.debug("Loading config from %s", path)
    try:
        data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
        return KubestrapConfig.model_validate(data)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse %s: %s", path, exc)
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    except ValidationError as exc:
        logger.error("Invalid config in %s: %s", path, exc)
        raise ConfigError(f"Invalid config in {path}: {exc}") from exc


def save_config(config: KubestrapConfig, path: Path | None = None) -> None:
    """Persist *config* to disk as pretty-printed JSON (mode 0o600)."""
    if path is None:
        path = get_config_path()

    path.parent.mkdir(parents=True, exist_ok=True)

    payload = config.model_dump(mode="json")
    text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    path.write_text(text, encoding="utf-8")
    os.chmod(path, 0o600)

    logger.debug("Config saved to %s", path)
