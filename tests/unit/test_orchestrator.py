# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for the Orchestrator.

Services are real /bin/sh processes with scripted probe results, so
startup gating, exit handling and shutdown run against actual children.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from kubestrap.config import NetworkConfig, PortConfig
from kubestrap.context import RuntimeContext
from kubestrap.exceptions import FatalServiceError
from kubestrap.kube.client import ControlPlane
from kubestrap.logparse.base import LineLogParser
from kubestrap.services import ExecutionEnvironment, ServiceKind
from kubestrap.services.base import ServiceHandler
from kubestrap.supervisor.health import HEALTHY, HealthMessage
from kubestrap.supervisor.orchestrator import Orchestrator, Phase, ServiceEntry, ServiceSpec
from kubestrap.supervisor.process_handle import ExitEvent

UNHEALTHY = HealthMessage(is_healthy=False, error="connection refused")


class ScriptedService(ServiceHandler):
    kind = ServiceKind.ETCD

    def __init__(self, env, name, script="exec sleep 30", healthy=True):
        super().__init__(env, MagicMock())
        self.name = name
        self.script = script
        self.healthy = healthy

    def command(self) -> list[str]:
        return ["-c", self.script]

    async def probe(self) -> HealthMessage:
        return HEALTHY if self.healthy else UNHEALTHY


class RecordingParser(LineLogParser):
    def __init__(self):
        super().__init__("test")
        self.lines: list[str] = []

    def handle_line(self, line: str) -> None:
        self.lines.append(line)


class FakeControlPlane(ControlPlane):
    def __init__(self):
        self.drained = 0
        self.closed = False

    async def wait_for_node(self) -> str:
        return "node1"

    async def drain_node(self) -> None:
        self.drained += 1

    async def find_service(self, name, namespace="default"):
        return "10.233.0.1", 443

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def env_factory(tmp_path: Path, fast_timings):
    def make(binary: str = "/bin/sh") -> ExecutionEnvironment:
        return ExecutionEnvironment(
            binary=Path(binary),
            workdir=tmp_path,
            network=NetworkConfig(),
            ports=PortConfig(),
            timings=fast_timings,
        )
    return make


@pytest.fixture
def services():
    """Name -> handler for everything constructed during the test."""
    return {}


def spec(services, env_factory, name, **kwargs) -> ServiceSpec:
    binary = kwargs.pop("binary", "/bin/sh")
    log_consumer = kwargs.pop("log_consumer", None)
    after_ready = kwargs.pop("after_ready", None)

    def construct():
        svc = ScriptedService(env_factory(binary), name, **kwargs)
        services[name] = svc
        return svc

    return ServiceSpec(name=name, constructor=construct, log_consumer=log_consumer, after_ready=after_ready)


async def wait_for(predicate, timeout: float = 10.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


# ── Startup ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_starts_in_order_and_stops_on_termination(services, env_factory, fast_timings):
    after_ready = MagicMock()
    control_plane = FakeControlPlane()
    on_running = MagicMock()

    async def running(cp):
        on_running(cp)

    orch = Orchestrator(
        [
            spec(services, env_factory, "a", after_ready=after_ready),
            spec(services, env_factory, "b"),
        ],
        fast_timings,
        RuntimeContext(),
        control_plane_factory=lambda: control_plane,
        on_running=running,
    )

    task = asyncio.create_task(orch.run())
    await wait_for(lambda: orch.phase is Phase.RUNNING and on_running.called)

    assert list(services) == ["a", "b"]
    after_ready.assert_called_once()
    on_running.assert_called_once_with(control_plane)

    orch.request_termination()
    await asyncio.wait_for(task, 10)

    assert orch.phase is Phase.STOPPED
    assert control_plane.drained == 1
    assert control_plane.closed
    for svc in services.values():
        assert svc.process.exit_status.error == "signal: SIGTERM"


@pytest.mark.asyncio
async def test_gate_exhaustion_aborts_without_starting_later_services(
    services, env_factory, fast_timings,
):
    orch = Orchestrator(
        [
            spec(services, env_factory, "a"),
            spec(services, env_factory, "b", healthy=False),
            spec(services, env_factory, "c"),
        ],
        fast_timings,
        RuntimeContext(),
    )

    with pytest.raises(FatalServiceError) as exc_info:
        await asyncio.wait_for(orch.run(), 10)

    assert exc_info.value.service == "b"
    assert "connection refused" in exc_info.value.reason
    assert "c" not in services
    assert not services["a"].is_running
    assert not services["b"].is_running


@pytest.mark.asyncio
async def test_missing_binary_aborts(services, env_factory, fast_timings, tmp_path):
    orch = Orchestrator(
        [spec(services, env_factory, "a", binary=str(tmp_path / "nope"))],
        fast_timings,
        RuntimeContext(),
    )

    with pytest.raises(FatalServiceError) as exc_info:
        await asyncio.wait_for(orch.run(), 10)

    assert exc_info.value.service == "a"
    assert "couldn't start" in exc_info.value.reason


@pytest.mark.asyncio
async def test_exit_during_startup_is_fatal(services, env_factory, fast_timings):
    # Long gate so the exit is observed while the service is still gating
    timings = fast_timings.model_copy(update={"startup_retries": 500})
    orch = Orchestrator(
        [spec(services, env_factory, "a", script="exit 3", healthy=False)],
        timings,
        RuntimeContext(),
    )

    with pytest.raises(FatalServiceError) as exc_info:
        await asyncio.wait_for(orch.run(), 10)

    assert exc_info.value.service == "a"
    assert "exit status 3" in exc_info.value.reason


@pytest.mark.asyncio
async def test_output_reaches_log_consumer(services, env_factory, fast_timings):
    consumer = MagicMock()
    orch = Orchestrator(
        [spec(services, env_factory, "a", script="echo hello; exec sleep 30", log_consumer=consumer)],
        fast_timings,
        RuntimeContext(),
    )

    task = asyncio.create_task(orch.run())
    await wait_for(lambda: consumer.handle_data.called)
    orch.request_termination()  # still starting or running; either way it ends
    try:
        await asyncio.wait_for(task, 10)
    except FatalServiceError:
        pass

    consumer.handle_data.assert_any_call(b"hello\n", "stdout")


@pytest.mark.asyncio
async def test_termination_while_starting_aborts(services, env_factory, fast_timings):
    orch = Orchestrator([spec(services, env_factory, "a")], fast_timings, RuntimeContext())

    orch.request_termination()

    assert orch.failure is not None
    assert orch.failure.service == "kubestrap"
    with pytest.raises(FatalServiceError):
        await asyncio.wait_for(orch.run(), 10)
    assert "a" not in services


@pytest.mark.asyncio
async def test_shutdown_hook_stops_services(services, env_factory, fast_timings):
    context = RuntimeContext()
    orch = Orchestrator([spec(services, env_factory, "a")], fast_timings, context)

    task = asyncio.create_task(orch.run())
    await wait_for(lambda: orch.phase is Phase.RUNNING)
    context.run_shutdown_hooks()

    # The stopped service exits while RUNNING, which the monitor treats as fatal
    with pytest.raises(FatalServiceError) as exc_info:
        await asyncio.wait_for(task, 10)
    assert exc_info.value.service == "a"


@pytest.mark.asyncio
async def test_control_plane_factory_error_stops_services(services, env_factory, fast_timings):
    def broken_factory():
        raise FileNotFoundError("kubeconfig")

    orch = Orchestrator(
        [spec(services, env_factory, "a"), spec(services, env_factory, "b")],
        fast_timings,
        RuntimeContext(),
        control_plane_factory=broken_factory,
    )

    with pytest.raises(FatalServiceError) as exc_info:
        await asyncio.wait_for(orch.run(), 10)

    assert exc_info.value.service == "kube-apiserver"
    assert [name for name, svc in services.items() if svc.is_running] == []
    for svc in services.values():
        assert svc.process.exit_status.error == "signal: SIGTERM"


@pytest.mark.asyncio
async def test_unexpected_error_still_stops_services(services, env_factory, fast_timings):
    async def failing_on_running(cp):
        raise ValueError("bad banner")

    orch = Orchestrator(
        [spec(services, env_factory, "a"), spec(services, env_factory, "b")],
        fast_timings,
        RuntimeContext(),
        on_running=failing_on_running,
    )

    with pytest.raises(ValueError):
        await asyncio.wait_for(orch.run(), 10)

    assert [name for name, svc in services.items() if svc.is_running] == []
    assert orch.failure is None


@pytest.mark.asyncio
async def test_trailing_output_is_flushed_per_stream(services, env_factory, fast_timings):
    parser = RecordingParser()
    orch = Orchestrator(
        [
            spec(
                services, env_factory, "a",
                script="printf 'first\\nlast'; printf 'err' >&2; exec sleep 30",
                log_consumer=parser,
            ),
        ],
        fast_timings,
        RuntimeContext(),
    )

    task = asyncio.create_task(orch.run())
    await wait_for(lambda: orch.phase is Phase.RUNNING and parser.lines)
    orch.request_termination()
    await asyncio.wait_for(task, 10)

    assert sorted(parser.lines) == ["err", "first", "last"]


@pytest.mark.asyncio
async def test_fatal_condition_is_logged_through_context(services, env_factory, fast_timings):
    context = RuntimeContext(logger=MagicMock())
    orch = Orchestrator([spec(services, env_factory, "a", healthy=False)], fast_timings, context)

    with pytest.raises(FatalServiceError):
        await asyncio.wait_for(orch.run(), 10)

    context.logger.critical.assert_called_once()
    assert context.logger.critical.call_args.args[1] is orch.failure


# ── Steady state ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sustained_unhealthiness_aborts_running_cluster(services, env_factory, fast_timings):
    orch = Orchestrator(
        [
            spec(services, env_factory, "a"),
            spec(services, env_factory, "b"),
            spec(services, env_factory, "c"),
        ],
        fast_timings,
        RuntimeContext(),
    )

    task = asyncio.create_task(orch.run())
    await wait_for(lambda: orch.phase is Phase.RUNNING)
    services["b"].healthy = False

    with pytest.raises(FatalServiceError) as exc_info:
        await asyncio.wait_for(task, 10)

    assert exc_info.value.service == "b"
    assert "unhealthy 10 times in a row" in exc_info.value.reason
    for svc in services.values():
        assert svc.process.exit_status.error == "signal: SIGTERM"


@pytest.mark.asyncio
async def test_crash_while_running_aborts_and_stops_others(
    services, env_factory, fast_timings, tmp_path,
):
    trigger = tmp_path / "crash-now"
    orch = Orchestrator(
        [
            spec(services, env_factory, "a"),
            spec(
                services, env_factory, "b",
                script=f"while [ ! -e '{trigger}' ]; do sleep 0.02; done; exit 4",
            ),
            spec(services, env_factory, "c"),
        ],
        fast_timings,
        RuntimeContext(),
    )

    task = asyncio.create_task(orch.run())
    await wait_for(lambda: orch.phase is Phase.RUNNING)
    trigger.touch()

    with pytest.raises(FatalServiceError) as exc_info:
        await asyncio.wait_for(task, 10)

    assert exc_info.value.service == "b"
    assert "exit status 4" in exc_info.value.reason
    assert services["a"].process.exit_status.error == "signal: SIGTERM"
    assert services["c"].process.exit_status.error == "signal: SIGTERM"


def running_orchestrator(fast_timings) -> tuple[Orchestrator, ServiceEntry]:
    orch = Orchestrator([], fast_timings, RuntimeContext())
    orch.phase = Phase.RUNNING
    entry = ServiceEntry(name="kubelet", handler=MagicMock())
    return orch, entry


@pytest.mark.asyncio
async def test_nine_unhealthy_probes_do_not_abort(fast_timings):
    orch, entry = running_orchestrator(fast_timings)

    for _ in range(9):
        orch.handle_health(entry, UNHEALTHY)

    assert entry.unhealthy_count == 9
    assert orch.failure is None


@pytest.mark.asyncio
async def test_tenth_unhealthy_probe_aborts(fast_timings):
    orch, entry = running_orchestrator(fast_timings)

    for _ in range(10):
        orch.handle_health(entry, UNHEALTHY)

    assert orch.failure is not None
    assert orch.failure.service == "kubelet"


@pytest.mark.asyncio
async def test_healthy_probe_resets_counter(fast_timings):
    orch, entry = running_orchestrator(fast_timings)

    for _ in range(9):
        orch.handle_health(entry, UNHEALTHY)
    orch.handle_health(entry, HEALTHY)
    for _ in range(9):
        orch.handle_health(entry, UNHEALTHY)

    assert entry.unhealthy_count == 9
    assert orch.failure is None


@pytest.mark.asyncio
async def test_exit_while_running_is_fatal(fast_timings):
    orch, entry = running_orchestrator(fast_timings)

    orch.handle_exit(entry, ExitEvent(success=False, returncode=1, error="exit status 1"))

    assert orch.failure is not None
    assert "exit status 1" in orch.failure.reason


@pytest.mark.asyncio
async def test_exit_while_draining_is_absorbed(fast_timings):
    orch, entry = running_orchestrator(fast_timings)
    orch.phase = Phase.DRAINING

    orch.handle_exit(entry, ExitEvent(success=False, returncode=-15, error="signal: SIGTERM"))
    orch.handle_health(entry, UNHEALTHY)

    assert orch.failure is None
    assert entry.unhealthy_count == 0


@pytest.mark.asyncio
async def test_first_fatal_condition_wins(fast_timings):
    orch, entry = running_orchestrator(fast_timings)
    other = ServiceEntry(name="kube-proxy", handler=MagicMock())

    orch.handle_exit(entry, ExitEvent(success=True, returncode=0))
    orch.handle_exit(other, ExitEvent(success=True, returncode=0))

    assert orch.failure.service == "kubelet"


@pytest.mark.asyncio
async def test_second_termination_request_is_ignored(fast_timings):
    orch, _ = running_orchestrator(fast_timings)

    orch.request_termination()
    orch.phase = Phase.DRAINING
    orch.request_termination()

    assert orch.failure is None
