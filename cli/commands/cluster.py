# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import argparse
import asyncio
import atexit
import json
import logging
import os
import signal
import sys
import time
from pathlib import Path

from pydantic import ValidationError

from kubestrap.config import KubestrapConfig, load_config

logger = logging.getLogger("kubestrap")


# ── PID helpers ───────────────────────────────────────────


def _get_pid_file() -> Path:
    """Return the path to the cluster PID file."""
    from kubestrap.paths import get_pid_file

    return get_pid_file()


def _write_pid_file() -> None:
    """Write the current process PID to the PID file."""
    pid_file = _get_pid_file()
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()), encoding="utf-8")
    logger.info("PID file written: %s (pid=%d)", pid_file, os.getpid())


def _remove_pid_file() -> None:
    """Remove the PID file if it exists and is ours."""
    pid_file = _get_pid_file()
    if _read_pid() not in (None, os.getpid()):
        return
    try:
        pid_file.unlink(missing_ok=True)
        logger.debug("PID file removed: %s", pid_file)
    except OSError as exc:
        logger.warning("Failed to remove PID file %s: %s", pid_file, exc)


def _read_pid() -> int | None:
    """Read and validate the PID from the PID file.

    Returns the PID if the file exists and contains a valid integer,
    or None if the file is missing or contains invalid data.
    """
    pid_file = _get_pid_file()
    if not pid_file.exists():
        return None
    try:
        text = pid_file.read_text(encoding="utf-8").strip()
        return int(text)
    except (ValueError, OSError) as exc:
        logger.warning("Invalid PID file %s: %s", pid_file, exc)
        return None


def _is_process_alive(pid: int) -> bool:
    """Check whether a process with the given PID is currently running."""
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True


def _stop_cluster(timeout: float) -> bool:
    """Send SIGTERM to the running cluster and wait for it to exit.

    The cluster drains its node before stopping, so *timeout* has to
    cover the drain deadline plus the grace period.

    Returns:
        True if the cluster was stopped (or was not running), False if
        it failed to stop within the timeout.
    """
    pid = _read_pid()
    if pid is None:
        print("No PID file found. Cluster is not running.")
        return True
    if not _is_process_alive(pid):
        print(f"Stale PID file (pid={pid}). Cluster is not running. Cleaning up.")
        _get_pid_file().unlink(missing_ok=True)
        return True

    print(f"Stopping cluster (pid={pid})...")
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        print("Cluster already exited.")
        return True
    except PermissionError:
        print(f"Error: Permission denied sending signal to pid={pid}.")
        return False

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not _is_process_alive(pid):
            print("Cluster stopped.")
            return True
        time.sleep(0.5)

    print(f"Error: Cluster (pid={pid}) did not stop within {timeout:.0f}s.")
    return False


# ── Configuration ─────────────────────────────────────────


def resolve_config(args: argparse.Namespace) -> KubestrapConfig:
    """Load config.json and apply command-line overrides on top.

    Raises:
        ConfigError: If config.json is invalid.
        ValidationError: If an override is invalid.
    """
    config = load_config()
    data = config.model_dump()

    if getattr(args, "base_dir", None):
        data["base_dir"] = Path(args.base_dir).expanduser()
    if getattr(args, "extra_bin_dir", None):
        data["extra_bin_dir"] = Path(args.extra_bin_dir).expanduser()
    if getattr(args, "sudo", None) is not None:
        data["sudo_method"] = args.sudo or None
    if getattr(args, "verbose", False):
        data["verbose"] = True
    for key in ("listen_address", "pod_range", "service_range"):
        value = getattr(args, key, None)
        if value:
            data["network"][key] = value
    if getattr(args, "port_base", None):
        data["ports"]["base"] = args.port_base

    return KubestrapConfig.model_validate(data)


# ── Commands ──────────────────────────────────────────────


async def _run_cluster(config: KubestrapConfig) -> None:
    from kubestrap.cluster import ClusterBootstrapper
    from kubestrap.context import RuntimeContext

    context = RuntimeContext()
    bootstrapper = ClusterBootstrapper(config, context)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, bootstrapper.request_termination)
    try:
        await bootstrapper.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        context.run_shutdown_hooks()


def cmd_start(args: argparse.Namespace) -> None:
    """Bring the cluster up and supervise it until interrupted."""
    from kubestrap.exceptions import FatalServiceError, KubestrapError
    from kubestrap.logging_config import set_process_output_verbosity

    try:
        config = resolve_config(args)
    except (KubestrapError, ValidationError) as e:
        print(f"Error: {e}")
        sys.exit(2)
    set_process_output_verbosity(config.verbose)

    existing_pid = _read_pid()
    if existing_pid is not None and _is_process_alive(existing_pid):
        print(f"Error: Cluster is already running (pid={existing_pid}).")
        print("Use 'kubestrap stop' first.")
        sys.exit(1)
    elif existing_pid is not None:
        logger.info("Stale PID file found (pid=%d). Cleaning up.", existing_pid)
        _get_pid_file().unlink(missing_ok=True)

    _write_pid_file()
    atexit.register(_remove_pid_file)

    try:
        asyncio.run(_run_cluster(config))
    except FatalServiceError as e:
        logger.critical("Cluster aborted, %s failed: %s", e.service, e.reason)
        sys.exit(1)
    except KubestrapError as e:
        logger.critical("Cluster could not be started: %s", e)
        sys.exit(1)
    finally:
        _remove_pid_file()


def cmd_stop(args: argparse.Namespace) -> None:
    """Stop the running cluster."""
    if not _stop_cluster(timeout=args.timeout):
        sys.exit(1)


def cmd_config_show(args: argparse.Namespace) -> None:
    """Print the effective configuration as JSON."""
    from kubestrap.exceptions import KubestrapError

    try:
        config = resolve_config(args)
    except (KubestrapError, ValidationError) as e:
        print(f"Error: {e}")
        sys.exit(2)
    print(json.dumps(config.model_dump(mode="json"), indent=2, ensure_ascii=False))
