# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0
"""
Process supervision package.

Runs each cluster component as a child process, reports its output and
exit as events, and probes its health over HTTP.  The orchestrator lives
in :mod:`kubestrap.supervisor.orchestrator`.
"""

from __future__ import annotations

from kubestrap.supervisor.health import HealthMessage, http_probe
from kubestrap.supervisor.process_handle import (
    ExitEvent,
    OutputEvent,
    ProcessHandle,
    ProcessState,
)

__all__ = [
    "ExitEvent",
    "HealthMessage",
    "OutputEvent",
    "ProcessHandle",
    "ProcessState",
    "http_probe",
]
