# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0
"""Unit tests for the control-plane client and kubeconfig handling."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
import yaml

from kubestrap.exceptions import ConfigError, ControlPlaneError
from kubestrap.kube.client import ControlPlaneClient, node_is_ready, pod_is_evictable
from kubestrap.kube.kubeconfig import read_kubeconfig, write_kubeconfig

SERVER = "https://127.0.0.1:7002"


def node(name: str, ready: bool) -> dict:
    return {
        "metadata": {"name": name},
        "status": {"conditions": [{"type": "Ready", "status": "True" if ready else "False"}]},
    }


def pod(name: str, owner: str | None = None, mirror: bool = False) -> dict:
    meta: dict = {"name": name, "namespace": "default"}
    if owner:
        meta["ownerReferences"] = [{"kind": owner, "name": "x"}]
    if mirror:
        meta["annotations"] = {"kubernetes.io/config.mirror": "abc"}
    return {"metadata": meta, "status": {"phase": "Running"}}


def make_client(handler) -> ControlPlaneClient:
    return ControlPlaneClient(
        SERVER, Path("ca.crt"), Path("client.crt"), Path("client.key"),
        poll_interval=0, transport=httpx.MockTransport(handler),
    )


# ── Helpers ───────────────────────────────────────────────────


def test_node_is_ready():
    assert node_is_ready(node("n", True))
    assert not node_is_ready(node("n", False))
    assert not node_is_ready({"metadata": {"name": "n"}})


def test_pod_is_evictable_skips_daemonsets_and_mirror_pods():
    assert pod_is_evictable(pod("web", owner="ReplicaSet"))
    assert not pod_is_evictable(pod("proxy", owner="DaemonSet"))
    assert not pod_is_evictable(pod("static", mirror=True))


# ── wait_for_node ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_wait_for_node_polls_until_ready():
    responses = [
        httpx.Response(503),
        httpx.Response(200, json={"items": []}),
        httpx.Response(200, json={"items": [node("node1", False)]}),
        httpx.Response(200, json={"items": [node("node1", True)]}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/nodes"
        return responses.pop(0)

    client = make_client(handler)
    try:
        assert await client.wait_for_node() == "node1"
    finally:
        await client.aclose()
    assert responses == []


# ── drain_node ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_drain_cordons_and_evicts_only_evictable_pods():
    calls: list[tuple[str, str, bytes]] = []
    pod_lists = [
        [pod("web"), pod("proxy", owner="DaemonSet"), pod("static", mirror=True)],
        [],
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path, request.content))
        if request.url.path == "/api/v1/nodes" and request.method == "GET":
            return httpx.Response(200, json={"items": [node("node1", True)]})
        if request.method == "PATCH":
            return httpx.Response(200, json={})
        if request.url.path == "/api/v1/pods":
            assert request.url.params["fieldSelector"] == "spec.nodeName=node1"
            return httpx.Response(200, json={"items": pod_lists.pop(0)})
        if request.url.path.endswith("/eviction"):
            return httpx.Response(201, json={})
        return httpx.Response(404)

    client = make_client(handler)
    try:
        await client.drain_node()
    finally:
        await client.aclose()

    patch = [c for c in calls if c[0] == "PATCH"]
    assert patch[0][1] == "/api/v1/nodes/node1"
    assert json.loads(patch[0][2]) == {"spec": {"unschedulable": True}}

    evictions = [c[1] for c in calls if c[1].endswith("/eviction")]
    assert evictions == ["/api/v1/namespaces/default/pods/web/eviction"]
    body = json.loads([c for c in calls if c[1].endswith("/eviction")][0][2])
    assert body["apiVersion"] == "policy/v1"


@pytest.mark.asyncio
async def test_drain_raises_on_api_failure():
    client = make_client(lambda request: httpx.Response(500, text="boom"))
    try:
        with pytest.raises(ControlPlaneError):
            await client.drain_node()
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_transport_errors_become_control_plane_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)
    try:
        with pytest.raises(ControlPlaneError):
            await client.find_service("kubernetes")
    finally:
        await client.aclose()


# ── find_service ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_find_service_found():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/namespaces/default/services/kubernetes"
        return httpx.Response(
            200, json={"spec": {"clusterIP": "10.233.0.1", "ports": [{"port": 443}]}},
        )

    client = make_client(handler)
    try:
        assert await client.find_service("kubernetes") == ("10.233.0.1", 443)
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_find_service_missing_returns_empty():
    client = make_client(lambda request: httpx.Response(404))
    try:
        assert await client.find_service("kube-dns", namespace="kube-system") == ("", 0)
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_find_service_invalid_json_raises():
    client = make_client(lambda request: httpx.Response(200, content=b"<html>"))
    try:
        with pytest.raises(ControlPlaneError):
            await client.find_service("kubernetes")
    finally:
        await client.aclose()


# ── kubeconfig ────────────────────────────────────────────────


def test_kubeconfig_roundtrip(tmp_path, credentials):
    path = write_kubeconfig(tmp_path / "kube" / "kubeconfig", SERVER, credentials)

    info = read_kubeconfig(path)

    assert info.server == SERVER
    assert info.ca_cert == credentials.kube_ca.cert_path
    assert info.client_key == credentials.kube_client.key_path
    assert path.stat().st_mode & 0o777 == 0o600
    assert yaml.safe_load(path.read_text())["current-context"] == "kubestrap"


def test_incomplete_kubeconfig_raises(tmp_path):
    path = tmp_path / "kubeconfig"
    path.write_text("apiVersion: v1\nkind: Config\n")

    with pytest.raises(ConfigError):
        read_kubeconfig(path)


@pytest.mark.asyncio
async def test_client_from_kubeconfig(tmp_path, credentials):
    path = write_kubeconfig(tmp_path / "kubeconfig", SERVER, credentials)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(404)

    client = ControlPlaneClient.from_kubeconfig(path, transport=httpx.MockTransport(handler))
    try:
        await client.find_service("kubernetes")
    finally:
        await client.aclose()

    assert seen == [f"{SERVER}/api/v1/namespaces/default/services/kubernetes"]
