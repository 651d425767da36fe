# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Health messages and the HTTP probes that produce them."""

from __future__ import annotations

import json
import logging
import ssl
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthMessage:
    """Result of one probe. ``error`` is set only when unhealthy."""

    is_healthy: bool
    error: str | None = None


HEALTHY = HealthMessage(is_healthy=True)

# A check inspects the response and returns an error description, or None
ResponseCheck = Callable[[httpx.Response], "str | None"]


def build_ssl_context(
    ca_cert: Path,
    client_cert: Path | None = None,
    client_key: Path | None = None,
) -> ssl.SSLContext:
    """TLS context trusting *ca_cert*, presenting the client pair if given."""
    ctx = ssl.create_default_context(cafile=str(ca_cert))
    if client_cert is not None and client_key is not None:
        ctx.load_cert_chain(str(client_cert), str(client_key))
    return ctx


# ── Response checks ────────────────────────────────────────────


def expect_ok_body(response: httpx.Response) -> str | None:
    """Healthy when the trimmed body is exactly ``ok``."""
    body = response.text.strip()
    if response.status_code != 200:
        return f"HTTP {response.status_code}: {body[:200]}"
    if body != "ok":
        return f"Health != ok: {body[:200]}"
    return None


def _json_body(response: httpx.Response) -> tuple[dict | None, str | None]:
    if response.status_code != 200:
        return None, f"HTTP {response.status_code}: {response.text.strip()[:200]}"
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return None, f"Malformed health response: {e}"
    if not isinstance(data, dict):
        return None, f"Malformed health response: expected an object, got {type(data).__name__}"
    return data, None


def expect_etcd_health(response: httpx.Response) -> str | None:
    """Healthy when the JSON body reports ``"health": "true"``."""
    data, error = _json_body(response)
    if error:
        return error
    health = data.get("health")
    if health != "true":
        reason = data.get("reason") or f"health={health!r}"
        return f"etcd reports unhealthy: {reason}"
    return None


def expect_proxy_health(response: httpx.Response) -> str | None:
    """Healthy when the JSON body carries a ``lastUpdated`` timestamp."""
    data, error = _json_body(response)
    if error:
        return error
    if "lastUpdated" not in data:
        return "Health response lacks lastUpdated"
    return None


# ── Probe ──────────────────────────────────────────────────────


async def http_probe(
    url: str,
    check: ResponseCheck,
    *,
    timeout: float,
    ssl_context: ssl.SSLContext | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HealthMessage:
    """GET *url* once and classify the outcome.

    Connection failures, timeouts and malformed answers all yield an
    unhealthy message carrying the error text; this never raises for
    transport problems.
    """
    kwargs: dict = {"timeout": timeout}
    if ssl_context is not None:
        kwargs["verify"] = ssl_context
    if transport is not None:
        kwargs["transport"] = transport

    try:
        async with httpx.AsyncClient(**kwargs) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        logger.debug("Probe %s failed: %s", url, e)
        return HealthMessage(is_healthy=False, error=f"{type(e).__name__}: {e}")

    error = check(response)
    if error:
        return HealthMessage(is_healthy=False, error=error)
    return HEALTHY
