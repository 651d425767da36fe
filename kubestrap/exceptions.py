from __future__ import annotations
# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of Kubestrap, licensed under Apache-2.0.
# See LICENSE for the full license text.

"""Unified exception hierarchy for Kubestrap.

All domain-specific exceptions derive from :class:`KubestrapError`,
enabling callers to catch the entire family with a single clause::

    try:
        ...
    except KubestrapError as e:
        logger.error("Domain error: %s", e)
"""


class KubestrapError(Exception):
    """Base exception for all Kubestrap errors."""


# ── Process ──────────────────────────────────────────────────


class ProcessError(KubestrapError):
    """Managed process errors."""


class ProcessStartError(ProcessError):
    """The process could not be spawned."""


class BinaryNotFoundError(ProcessStartError):
    """A required binary is not present on the search path."""


# ── Services ─────────────────────────────────────────────────


class ServiceError(KubestrapError):
    """Service handler errors."""


class HealthGateError(ServiceError):
    """A service did not become healthy within its startup budget."""


class FatalServiceError(ServiceError):
    """Unrecoverable condition that aborts the whole cluster.

    Carries the name of the service that caused the abort so the
    diagnostic printed on exit can point at it.
    """

    def __init__(self, service: str, reason: str) -> None:
        super().__init__(f"{service}: {reason}")
        self.service = service
        self.reason = reason


# ── Collaborators ────────────────────────────────────────────


class ConfigError(KubestrapError):
    """Configuration errors."""


class CredentialError(KubestrapError):
    """Certificates or keys are missing or unreadable."""


class ControlPlaneError(KubestrapError):
    """Kubernetes API call failed."""


class LogParseError(KubestrapError):
    """A chunk of process output could not be parsed."""
