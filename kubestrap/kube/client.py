# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Minimal Kubernetes API client.

Only what bootstrapping needs: wait for the node to register and become
Ready, drain it before shutdown, and look up services.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import httpx

from kubestrap.exceptions import ControlPlaneError
from kubestrap.kube.kubeconfig import read_kubeconfig
from kubestrap.supervisor.health import build_ssl_context

logger = logging.getLogger(__name__)

MIRROR_POD_ANNOTATION = "kubernetes.io/config.mirror"


class ControlPlane(ABC):
    """Operations the orchestrator needs from the cluster API."""

    @abstractmethod
    async def wait_for_node(self) -> str:
        """Block until a node reports Ready; return its name."""

    @abstractmethod
    async def drain_node(self) -> None:
        """Cordon every node and evict its evictable pods."""

    @abstractmethod
    async def find_service(self, name: str, namespace: str = "default") -> tuple[str, int]:
        """Return ``(cluster_ip, first_port)``, or ``("", 0)`` if absent."""

    async def aclose(self) -> None:
        """Release connections."""


def node_is_ready(node: dict) -> bool:
    for cond in node.get("status", {}).get("conditions", []) or []:
        if cond.get("type") == "Ready":
            return cond.get("status") == "True"
    return False


def pod_is_evictable(pod: dict) -> bool:
    """DaemonSet pods and mirror (static) pods are left alone by drain."""
    meta = pod.get("metadata", {})
    if MIRROR_POD_ANNOTATION in (meta.get("annotations") or {}):
        return False
    for owner in meta.get("ownerReferences") or []:
        if owner.get("kind") == "DaemonSet":
            return False
    phase = pod.get("status", {}).get("phase")
    return phase not in ("Succeeded", "Failed")


class ControlPlaneClient(ControlPlane):
    """:class:`ControlPlane` over the REST API, authenticated by client cert."""

    def __init__(
        self,
        server_url: str,
        ca_cert: Path,
        client_cert: Path,
        client_key: Path,
        *,
        poll_interval: float = 1.0,
        request_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.server_url = server_url
        self.poll_interval = poll_interval
        kwargs: dict[str, Any] = {"base_url": server_url, "timeout": request_timeout}
        if transport is not None:
            kwargs["transport"] = transport
        else:
            kwargs["verify"] = build_ssl_context(ca_cert, client_cert, client_key)
        self._client = httpx.AsyncClient(**kwargs)

    @classmethod
    def from_kubeconfig(cls, path: Path, **kwargs: Any) -> ControlPlaneClient:
        info = read_kubeconfig(path)
        return cls(info.server, info.ca_cert, info.client_cert, info.client_key, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Transport ────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ControlPlaneError(f"{method} {path} failed: {e}") from e

    async def _get_json(self, path: str, **kwargs: Any) -> dict:
        response = await self._request("GET", path, **kwargs)
        if response.status_code != 200:
            raise ControlPlaneError(
                f"GET {path} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ControlPlaneError(f"GET {path} returned invalid JSON: {e}") from e

    # ── Nodes ────────────────────────────────────────────────

    async def wait_for_node(self) -> str:
        while True:
            try:
                nodes = await self._get_json("/api/v1/nodes")
            except ControlPlaneError as e:
                logger.debug("Listing nodes failed, retrying: %s", e)
            else:
                for node in nodes.get("items", []):
                    if node_is_ready(node):
                        name = node["metadata"]["name"]
                        logger.info("Node %s is ready", name)
                        return name
            await asyncio.sleep(self.poll_interval)

    async def _node_names(self) -> list[str]:
        nodes = await self._get_json("/api/v1/nodes")
        return [n["metadata"]["name"] for n in nodes.get("items", [])]

    async def _cordon(self, node: str) -> None:
        response = await self._request(
            "PATCH",
            f"/api/v1/nodes/{node}",
            content=json.dumps({"spec": {"unschedulable": True}}),
            headers={"Content-Type": "application/merge-patch+json"},
        )
        if response.status_code != 200:
            raise ControlPlaneError(f"Cordoning {node} returned HTTP {response.status_code}")
        logger.info("Node %s cordoned", node)

    async def _pods_on(self, node: str) -> list[dict]:
        pods = await self._get_json(
            "/api/v1/pods", params={"fieldSelector": f"spec.nodeName={node}"},
        )
        return [p for p in pods.get("items", []) if pod_is_evictable(p)]

    async def _evict(self, pod: dict) -> None:
        meta = pod["metadata"]
        namespace, name = meta["namespace"], meta["name"]
        body = {
            "apiVersion": "policy/v1",
            "kind": "Eviction",
            "metadata": {"name": name, "namespace": namespace},
        }
        response = await self._request(
            "POST", f"/api/v1/namespaces/{namespace}/pods/{name}/eviction", json=body,
        )
        if response.status_code == 429:
            # Blocked by a disruption budget; retried on the next round
            logger.debug("Eviction of %s/%s deferred", namespace, name)
        elif response.status_code not in (200, 201, 404):
            raise ControlPlaneError(
                f"Evicting {namespace}/{name} returned HTTP {response.status_code}"
            )

    async def drain_node(self) -> None:
        """Cordon and evict until no evictable pod is left.

        Does not return while pods remain; callers bound it with a timeout.
        """
        for node in await self._node_names():
            await self._cordon(node)
            while True:
                pods = await self._pods_on(node)
                if not pods:
                    break
                logger.info("Evicting %d pod(s) from %s", len(pods), node)
                for pod in pods:
                    if not pod["metadata"].get("deletionTimestamp"):
                        await self._evict(pod)
                await asyncio.sleep(self.poll_interval)
            logger.info("Node %s drained", node)

    # ── Services ─────────────────────────────────────────────

    async def find_service(self, name: str, namespace: str = "default") -> tuple[str, int]:
        response = await self._request("GET", f"/api/v1/namespaces/{namespace}/services/{name}")
        if response.status_code == 404:
            return "", 0
        if response.status_code != 200:
            raise ControlPlaneError(
                f"Looking up service {namespace}/{name} returned HTTP {response.status_code}"
            )
        try:
            spec = response.json().get("spec", {})
        except json.JSONDecodeError as e:
            raise ControlPlaneError(
                f"Looking up service {namespace}/{name} returned invalid JSON: {e}"
            ) from e
        ports = spec.get("ports") or [{}]
        return spec.get("clusterIP", ""), int(ports[0].get("port", 0))
