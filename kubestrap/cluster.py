# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Wires configuration, credentials and services into an orchestrator."""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial
from pathlib import Path

from kubestrap.binaries import find_binary
from kubestrap.config import KubestrapConfig
from kubestrap.context import RuntimeContext
from kubestrap.exceptions import BinaryNotFoundError, ControlPlaneError, CredentialError
from kubestrap.kube.client import ControlPlane, ControlPlaneClient
from kubestrap.kube.kubeconfig import write_kubeconfig
from kubestrap.logparse import parser_for
from kubestrap.notify import sd_notify
from kubestrap.paths import kubeconfig_path, prepare_directories
from kubestrap.pki import ClusterCredentials, CredentialProvider, FileCredentialProvider
from kubestrap.services import (
    STARTUP_ORDER,
    WORKDIRS,
    ExecutionEnvironment,
    ServiceHandler,
    ServiceKind,
    build_service,
)
from kubestrap.supervisor.orchestrator import Orchestrator, ServiceSpec

logger = logging.getLogger(__name__)


def format_banner(kubeconfig: Path, api_service: tuple[str, int]) -> str:
    """Message shown once the cluster is usable."""
    lines = [
        "",
        "Kubestrap cluster is ready.",
        "",
        f"  kubeconfig:   {kubeconfig}",
    ]
    ip, port = api_service
    if ip:
        lines.append(f"  API service:  {ip}:{port}")
    lines += [
        "",
        "Try:",
        f"  kubectl --kubeconfig {kubeconfig} get nodes",
        "",
        "Press Ctrl-C to drain the node and stop the cluster.",
        "",
    ]
    return "\n".join(lines)


class ClusterBootstrapper:
    """Builds the service list and runs it through an :class:`Orchestrator`."""

    def __init__(
        self,
        config: KubestrapConfig,
        context: RuntimeContext,
        credential_provider: CredentialProvider | None = None,
        control_plane_factory: Callable[[Path], ControlPlane] | None = None,
    ):
        self.config = config
        self.context = context
        self.credential_provider = credential_provider or FileCredentialProvider()
        self.control_plane_factory = control_plane_factory or ControlPlaneClient.from_kubeconfig
        self.credentials: ClusterCredentials | None = None

        self.orchestrator = Orchestrator(
            self.service_specs(),
            config.timings,
            context,
            control_plane_factory=self._make_control_plane,
            on_running=self._on_running,
            on_draining=self._on_draining,
        )

    @property
    def base_dir(self) -> Path:
        return self.config.base_dir

    @property
    def kubeconfig_path(self) -> Path:
        return kubeconfig_path(self.base_dir)

    # ── Services ───────────────────────────────────────────────

    def resolve_binary(self, kind: ServiceKind) -> tuple[Path, str | None]:
        """Standalone binary of *kind*, else hyperkube plus subcommand."""
        try:
            return find_binary(kind.value, self.base_dir, self.config.extra_bin_dir), None
        except BinaryNotFoundError:
            if kind.hyperkube_subcommand is None:
                raise
        binary = find_binary("hyperkube", self.base_dir, self.config.extra_bin_dir)
        return binary, kind.hyperkube_subcommand

    def environment(self, kind: ServiceKind) -> ExecutionEnvironment:
        binary, subcommand = self.resolve_binary(kind)
        return ExecutionEnvironment(
            binary=binary,
            workdir=self.base_dir / WORKDIRS[kind],
            network=self.config.network,
            ports=self.config.ports,
            timings=self.config.timings,
            subcommand=subcommand,
            sudo_method=self.config.sudo_method,
            container_runtime_endpoint=self.config.container_runtime_endpoint,
        )

    def _build(self, kind: ServiceKind) -> ServiceHandler:
        if self.credentials is None:
            raise CredentialError("Credentials not loaded")
        return build_service(kind, self.environment(kind), self.credentials)

    def service_specs(self) -> list[ServiceSpec]:
        return [
            ServiceSpec(
                name=kind.value,
                constructor=partial(self._build, kind),
                log_consumer=parser_for(kind),
                after_ready=self.ensure_kubeconfig if kind is ServiceKind.KUBE_APISERVER else None,
            )
            for kind in STARTUP_ORDER
        ]

    def ensure_kubeconfig(self) -> Path:
        """Generate the client kubeconfig unless it already exists."""
        assert self.credentials is not None
        path = self.kubeconfig_path
        if not path.exists():
            net = self.config.network
            server = f"https://{net.url_host}:{self.config.ports.kube_api}"
            write_kubeconfig(path, server, self.credentials)
        self.credentials.kubeconfig = path
        return path

    # ── Orchestrator hooks ─────────────────────────────────────

    def _make_control_plane(self) -> ControlPlane:
        return self.control_plane_factory(self.kubeconfig_path)

    async def _on_running(self, control_plane: ControlPlane | None) -> None:
        sd_notify("READY=1")
        api_service = ("", 0)
        if control_plane is not None:
            try:
                api_service = await control_plane.find_service("kubernetes")
            except ControlPlaneError as e:
                logger.debug("Service lookup failed: %s", e)
        print(format_banner(self.kubeconfig_path, api_service))

    def _on_draining(self) -> None:
        sd_notify("STOPPING=1")

    # ── Entry points ───────────────────────────────────────────

    def prepare(self) -> None:
        """Create the state layout and load credentials.

        Raises:
            ConfigError: If the state directories cannot be created.
            CredentialError: If TLS material is missing.
        """
        prepare_directories(self.base_dir)
        net = self.config.network
        self.credentials = self.credential_provider.load(
            self.base_dir, net.listen_address, net.service_address,
        )

    async def run(self) -> None:
        self.prepare()
        await self.orchestrator.run()

    def request_termination(self) -> None:
        self.orchestrator.request_termination()
