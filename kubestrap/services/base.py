# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Base class shared by every cluster component.

A handler knows how to launch its component (arguments, config files)
and how to ask it whether it is healthy.  Process lifecycle is delegated
to :class:`~kubestrap.supervisor.process_handle.ProcessHandle`.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

import httpx
import yaml

from kubestrap.config import NetworkConfig, PortConfig, TimingConfig
from kubestrap.exceptions import ProcessError, ServiceError
from kubestrap.pki import ClusterCredentials
from kubestrap.services.kinds import ServiceKind
from kubestrap.supervisor.health import HealthMessage, build_ssl_context
from kubestrap.supervisor.process_handle import ProcessHandle

logger = logging.getLogger(__name__)


@dataclass
class ExecutionEnvironment:
    """Where and how one component runs."""

    binary: Path
    workdir: Path
    network: NetworkConfig
    ports: PortConfig
    timings: TimingConfig
    subcommand: str | None = None
    sudo_method: str | None = None
    container_runtime_endpoint: str | None = None


def write_yaml(path: Path, data: dict) -> Path:
    """Write a component configuration file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


class ServiceHandler(ABC):
    """One cluster component.

    Subclasses set :attr:`kind`, build the argument list in
    :meth:`command` and implement :meth:`probe`.  :meth:`prepare` runs
    right before every launch and may write config files.
    """

    kind: ClassVar[ServiceKind]
    needs_root: ClassVar[bool] = False

    def __init__(self, env: ExecutionEnvironment, credentials: ClusterCredentials):
        self.env = env
        self.credentials = credentials
        self.name = self.kind.value
        self.process: ProcessHandle | None = None
        self.transport: httpx.AsyncBaseTransport | None = None  # overridable in tests
        self._prober_task: asyncio.Task | None = None
        self._ssl_context: ssl.SSLContext | None = None
        self._stopped = False

    # ── Component specifics ─────────────────────────────────

    def prepare(self) -> None:
        """Write whatever the component reads at startup."""

    @abstractmethod
    def command(self) -> list[str]:
        """Arguments passed to the binary."""

    @abstractmethod
    async def probe(self) -> HealthMessage:
        """Ask the component whether it is healthy, once."""

    # ── Helpers for subclasses ──────────────────────────────

    @property
    def kubeconfig(self) -> Path:
        if self.credentials.kubeconfig is None:
            raise ServiceError(f"{self.name} needs a kubeconfig, none generated yet")
        return self.credentials.kubeconfig

    def ssl_context(
        self, ca_cert: Path, client_cert: Path | None = None, client_key: Path | None = None,
    ) -> ssl.SSLContext:
        """Probe TLS context, built on first use."""
        if self._ssl_context is None:
            self._ssl_context = build_ssl_context(ca_cert, client_cert, client_key)
        return self._ssl_context

    # ── Lifecycle ───────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.is_running

    async def start(self) -> None:
        """Launch the component.

        Raises:
            ProcessError: If the component is already running.
            ProcessStartError: If the binary cannot be executed.
        """
        if self.is_running:
            raise ProcessError(f"{self.name} is already running")

        self.prepare()
        args = self.command()
        if self.env.subcommand:
            args = [self.env.subcommand, *args]

        self.process = ProcessHandle(
            self.name,
            self.env.binary,
            args,
            workdir=self.env.workdir,
            sudo_method=self.env.sudo_method if self.needs_root else None,
        )
        self._stopped = False
        await self.process.start()

    async def enable_health_checks(
        self, messages: asyncio.Queue[HealthMessage], forever: bool = False,
    ) -> None:
        """Deliver health results on *messages*.

        With ``forever=False`` exactly one probe runs and its result is
        queued before returning.  With ``forever=True`` a background
        prober queues one result per health interval until :meth:`stop`.
        """
        if not forever:
            await messages.put(await self._safe_probe())
            return

        if self._prober_task is not None and not self._prober_task.done():
            logger.debug("Health checks for %s already enabled", self.name)
            return
        if self._stopped:
            return
        self._prober_task = asyncio.create_task(
            self._probe_loop(messages), name=f"{self.name}-prober",
        )

    async def _probe_loop(self, messages: asyncio.Queue[HealthMessage]) -> None:
        interval = self.env.timings.health_interval_sec
        while True:
            await asyncio.sleep(interval)
            await messages.put(await self._safe_probe())

    async def _safe_probe(self) -> HealthMessage:
        try:
            return await self.probe()
        except (OSError, ServiceError) as e:
            # unreadable certificate files end up here too (ssl.SSLError)
            logger.debug("Probe of %s failed: %s", self.name, e)
            return HealthMessage(is_healthy=False, error=str(e))

    def stop(self) -> None:
        """Stop probing and ask the process to terminate.  Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        if self._prober_task is not None:
            self._prober_task.cancel()
        if self.process is not None:
            self.process.stop()

    def kill(self) -> None:
        if self.process is not None:
            self.process.kill()

    async def aclose(self) -> None:
        """Wait for the cancelled prober to finish."""
        if self._prober_task is not None:
            self._prober_task.cancel()
            await asyncio.gather(self._prober_task, return_exceptions=True)
            self._prober_task = None
