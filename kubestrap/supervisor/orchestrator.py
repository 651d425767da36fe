"""
Orchestrator - Brings the cluster up in order and keeps it healthy.
"""

# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from kubestrap.config import TimingConfig
from kubestrap.context import RuntimeContext
from kubestrap.exceptions import (
    ControlPlaneError,
    FatalServiceError,
    HealthGateError,
    KubestrapError,
    LogParseError,
)
from kubestrap.kube.client import ControlPlane
from kubestrap.logparse.base import LogConsumer
from kubestrap.services.base import ServiceHandler
from kubestrap.supervisor.health import HealthMessage
from kubestrap.supervisor.process_handle import ExitEvent, OutputEvent, ProcessEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Extra wait for processes to be reaped after SIGKILL
KILL_REAP_TIMEOUT = 2.0

# Time for event pumps to deliver the last output after all processes exited
PUMP_DRAIN_TIMEOUT = 1.0


# ── Types ──────────────────────────────────────────────────────────

class Phase(Enum):
    """Lifecycle phase of the whole cluster."""
    STARTING = "starting"      # Services coming up one by one
    RUNNING = "running"        # Node ready, steady-state monitoring
    DRAINING = "draining"      # Termination requested, shutting down
    STOPPED = "stopped"        # Everything stopped


@dataclass
class ServiceSpec:
    """How to create and follow one service."""
    name: str
    constructor: Callable[[], ServiceHandler]
    log_consumer: LogConsumer | None = None
    after_ready: Callable[[], None] | None = None   # runs once the gate passed


@dataclass
class ServiceEntry:
    """A started service and its channels."""
    name: str
    handler: ServiceHandler
    exit_queue: asyncio.Queue[ExitEvent] = field(default_factory=lambda: asyncio.Queue(maxsize=2))
    health_queue: asyncio.Queue[HealthMessage] = field(
        default_factory=lambda: asyncio.Queue(maxsize=2),
    )
    unhealthy_count: int = 0


# ── Orchestrator ───────────────────────────────────────────────────

class Orchestrator:
    """
    Starts services strictly in order and supervises them.

    Responsibilities:
    - Start each service and gate on its health before the next one
    - Pump process output into the log parsers
    - Wait for the node to become ready, then monitor every service
    - Abort everything on the first fatal condition
    - Drain the node and stop everything on termination request

    There is no per-service restart: any fatal condition stops the whole
    cluster and :meth:`run` raises :class:`FatalServiceError`.
    """

    def __init__(
        self,
        specs: list[ServiceSpec],
        timings: TimingConfig,
        context: RuntimeContext,
        control_plane_factory: Callable[[], ControlPlane] | None = None,
        on_running: Callable[[ControlPlane | None], Awaitable[None]] | None = None,
        on_draining: Callable[[], None] | None = None,
    ):
        self.specs = specs
        self.timings = timings
        self.context = context
        self.control_plane_factory = control_plane_factory
        self.on_running = on_running
        self.on_draining = on_draining

        self.phase = Phase.STARTING
        self.handlers: list[ServiceHandler] = []
        self.entries: list[ServiceEntry] = []
        self._tasks: set[asyncio.Task] = set()
        self._pumps: list[asyncio.Task] = []
        self._fatal: asyncio.Future[None] | None = None
        self._termination = asyncio.Event()
        self._control_plane: ControlPlane | None = None

    # ── Fatal handling ─────────────────────────────────────────

    def _fatal_future(self) -> asyncio.Future[None]:
        if self._fatal is None:
            self._fatal = asyncio.get_running_loop().create_future()
        return self._fatal

    @property
    def failure(self) -> FatalServiceError | None:
        """The error that aborted the cluster, if any."""
        fut = self._fatal
        if fut is None or not fut.done():
            return None
        return fut.exception()  # type: ignore[return-value]

    def _abort(self, service: str, reason: str) -> FatalServiceError:
        """Record a fatal condition.  The first one wins."""
        fut = self._fatal_future()
        if not fut.done():
            err = FatalServiceError(service, reason)
            self.context.logger.critical("Fatal: %s", err)
            fut.set_exception(err)
        return fut.exception()  # type: ignore[return-value]

    async def _guard(self, aw: Coroutine[Any, Any, T]) -> T:
        """Run *aw* unless a fatal condition interrupts it first."""
        fatal = self._fatal_future()
        task = asyncio.ensure_future(aw)
        await asyncio.wait({task, fatal}, return_when=asyncio.FIRST_COMPLETED)
        if fatal.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise fatal.exception()  # type: ignore[misc]
        return task.result()

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── Main entry ─────────────────────────────────────────────

    async def run(self) -> None:
        """
        Run the cluster until termination is requested.

        Raises:
            FatalServiceError: When a service could not be started, did
                not become healthy, exited or stayed unhealthy.
        """
        self._fatal_future()
        self.context.register_shutdown_hook(self.stop_all)
        try:
            await self._guard(self.start_all())
            await self._guard(self._wait_until_node_ready())
            await self._guard(self.enable_health_checks())
            if self.on_running:
                await self._guard(self.on_running(self._control_plane))
            await self._guard(self._termination.wait())
            await self._drain()
        finally:
            # Exits caused by stopping are expected from here on
            self.phase = Phase.DRAINING
            self.stop_all()
            await self._wait_for_exits()
            await self._cleanup()
        self.phase = Phase.STOPPED
        logger.info("All services stopped")

    def request_termination(self) -> None:
        """
        Ask the cluster to shut down.

        During startup this aborts immediately; once running it drains
        the node first.  Further requests are ignored.
        """
        if self.phase is Phase.STARTING:
            self._abort("kubestrap", "interrupted during startup")
        elif self.phase is Phase.RUNNING:
            logger.info("Exit signal received, stopping now.")
            self._termination.set()
        else:
            logger.debug("Termination already in progress (phase=%s)", self.phase.value)

    # ── Startup ────────────────────────────────────────────────

    async def start_all(self) -> None:
        logger.info("Starting %d services", len(self.specs))
        for spec in self.specs:
            await self.start_service(spec)
        logger.info("All services started")

    async def start_service(self, spec: ServiceSpec) -> ServiceEntry:
        """Start one service and block until it passed its health gate."""
        logger.info("Starting %s...", spec.name)
        try:
            handler = spec.constructor()
            self.handlers.append(handler)
            await handler.start()
        except (KubestrapError, OSError) as e:
            raise self._abort(spec.name, f"couldn't start: {e}") from e

        assert handler.process is not None
        entry = ServiceEntry(name=spec.name, handler=handler)
        self.entries.append(entry)
        pump = self._spawn(
            self._pump_events(entry, handler.process.events, spec.log_consumer),
            name=f"{spec.name}-pump",
        )
        self._pumps.append(pump)

        try:
            await self._health_gate(entry)
        except HealthGateError as e:
            raise self._abort(spec.name, str(e)) from e

        if spec.after_ready:
            try:
                spec.after_ready()
            except (KubestrapError, OSError) as e:
                raise self._abort(spec.name, f"post-start step failed: {e}") from e

        logger.info("%s is healthy", spec.name)
        return entry

    async def _health_gate(self, entry: ServiceEntry) -> None:
        t = self.timings
        msg = HealthMessage(is_healthy=False, error="not probed")
        for attempt in range(1, t.startup_retries + 1):
            await asyncio.sleep(t.startup_retry_interval_sec)
            await entry.handler.enable_health_checks(entry.health_queue, forever=False)
            msg = await entry.health_queue.get()
            if msg.is_healthy:
                return
            logger.debug(
                "%s not healthy yet (attempt %d/%d): %s",
                entry.name, attempt, t.startup_retries, msg.error,
            )
        raise HealthGateError(
            f"not healthy after {t.startup_retries} attempts: {msg.error}"
        )

    async def _pump_events(
        self,
        entry: ServiceEntry,
        events: asyncio.Queue[ProcessEvent],
        consumer: LogConsumer | None,
    ) -> None:
        """Forward output to the parser until the exit event arrives."""
        while True:
            event = await events.get()
            if isinstance(event, OutputEvent):
                if consumer is None:
                    continue
                try:
                    consumer.handle_data(event.data, event.stream)
                except LogParseError as e:
                    logger.warning("Dropped output of %s: %s", entry.name, e)
                continue

            if consumer is not None:
                try:
                    consumer.flush()
                except LogParseError as e:
                    logger.warning("Dropped trailing output of %s: %s", entry.name, e)
            if self.phase is Phase.STARTING:
                self._abort(entry.name, f"exited during startup ({_describe_exit(event)})")
            entry.exit_queue.put_nowait(event)
            return

    async def _wait_until_node_ready(self) -> None:
        if self.control_plane_factory is not None:
            try:
                self._control_plane = self.control_plane_factory()
            except (KubestrapError, OSError, ValueError) as e:
                raise self._abort("kube-apiserver", f"couldn't create API client: {e}") from e
            logger.info("Waiting for node to become ready...")
            try:
                async with asyncio.timeout(self.timings.node_ready_timeout_sec):
                    await self._control_plane.wait_for_node()
            except TimeoutError as e:
                raise self._abort(
                    "kubelet",
                    f"node not ready after {self.timings.node_ready_timeout_sec:.0f}s",
                ) from e
            except KubestrapError as e:
                raise self._abort("kube-apiserver", f"node lookup failed: {e}") from e
        self.phase = Phase.RUNNING
        logger.info("Cluster is running")

    # ── Steady state ───────────────────────────────────────────

    async def enable_health_checks(self) -> None:
        """Arm the periodic prober of every service and start monitoring."""
        for entry in self.entries:
            await entry.handler.enable_health_checks(entry.health_queue, forever=True)
            self._spawn(self._monitor(entry), name=f"{entry.name}-monitor")

    async def _monitor(self, entry: ServiceEntry) -> None:
        exit_get = asyncio.ensure_future(entry.exit_queue.get())
        health_get = asyncio.ensure_future(entry.health_queue.get())
        try:
            while True:
                done, _ = await asyncio.wait(
                    {exit_get, health_get}, return_when=asyncio.FIRST_COMPLETED,
                )
                if exit_get in done:
                    self.handle_exit(entry, exit_get.result())
                    exit_get = asyncio.ensure_future(entry.exit_queue.get())
                if health_get in done:
                    self.handle_health(entry, health_get.result())
                    health_get = asyncio.ensure_future(entry.health_queue.get())
        finally:
            exit_get.cancel()
            health_get.cancel()

    def handle_health(self, entry: ServiceEntry, msg: HealthMessage) -> None:
        if self.phase is not Phase.RUNNING:
            return
        if msg.is_healthy:
            if entry.unhealthy_count:
                logger.info("%s recovered after %d failed checks", entry.name, entry.unhealthy_count)
            entry.unhealthy_count = 0
            return

        entry.unhealthy_count += 1
        logger.warning(
            "%s is unhealthy (%d/%d): %s",
            entry.name, entry.unhealthy_count, self.timings.unhealthy_threshold, msg.error,
        )
        if entry.unhealthy_count >= self.timings.unhealthy_threshold:
            self._abort(entry.name, f"unhealthy {entry.unhealthy_count} times in a row")

    def handle_exit(self, entry: ServiceEntry, event: ExitEvent) -> None:
        if self.phase in (Phase.DRAINING, Phase.STOPPED):
            logger.info("%s exited (%s)", entry.name, _describe_exit(event))
            return
        self._abort(entry.name, f"exited unexpectedly ({_describe_exit(event)})")

    # ── Shutdown ───────────────────────────────────────────────

    async def _drain(self) -> None:
        self.phase = Phase.DRAINING
        logger.info("Shutting down...")
        if self.on_draining:
            self.on_draining()
        if self._control_plane is None:
            return
        try:
            async with asyncio.timeout(self.timings.drain_timeout_sec):
                await self._control_plane.drain_node()
        except TimeoutError:
            logger.warning("Drain did not finish within %.0fs", self.timings.drain_timeout_sec)
        except ControlPlaneError as e:
            logger.warning("Drain failed: %s", e)

    def stop_all(self) -> None:
        """Ask every started service to stop.  Idempotent."""
        for handler in reversed(self.handlers):
            handler.stop()

    async def _wait_for_exits(self) -> None:
        """Give services the grace period to exit, then kill the rest."""
        pending = [h.process for h in self.handlers if h.process and h.process.is_running]
        if not pending:
            return
        try:
            async with asyncio.timeout(self.timings.grace_period_sec):
                await asyncio.gather(*(p.wait() for p in pending))
            return
        except TimeoutError:
            pass

        for handler in self.handlers:
            if handler.is_running:
                logger.warning("%s did not stop in time, killing", handler.name)
                handler.kill()
        try:
            async with asyncio.timeout(KILL_REAP_TIMEOUT):
                await asyncio.gather(*(p.wait() for p in pending))
        except TimeoutError:
            logger.error("Some services could not be reaped")

    async def _cleanup(self) -> None:
        pumps = [t for t in self._pumps if not t.done()]
        if pumps:
            await asyncio.wait(pumps, timeout=PUMP_DRAIN_TIMEOUT)
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        for handler in self.handlers:
            await handler.aclose()
        if self._control_plane is not None:
            await self._control_plane.aclose()
            self._control_plane = None


def _describe_exit(event: ExitEvent) -> str:
    return event.error or "exit status 0"
