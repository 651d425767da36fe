# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import argparse
import os


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Kubestrap - Local Single-Node Cluster Bootstrapper"
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Override runtime data directory (default: ~/.kubestrap or KUBESTRAP_DATA_DIR)",
    )
    sub = parser.add_subparsers(dest="command")

    # ── Start ─────────────────────────────────────────────
    p_start = sub.add_parser("start", help="Bring up the cluster and supervise it")
    _add_cluster_options(p_start)
    p_start.add_argument(
        "--verbose", "-v", action="store_true",
        help="Show the output of the cluster components",
    )
    p_start.set_defaults(func=_lazy_start)

    # ── Stop ──────────────────────────────────────────────
    p_stop = sub.add_parser("stop", help="Drain and stop a running cluster")
    p_stop.add_argument(
        "--timeout", type=float, default=90.0,
        help="Seconds to wait for the cluster to exit (default: 90)",
    )
    p_stop.set_defaults(func=_lazy_stop)

    # ── Config ────────────────────────────────────────────
    p_config = sub.add_parser("config", help="Inspect configuration")
    config_sub = p_config.add_subparsers(dest="config_command")
    p_cfg_show = config_sub.add_parser("show", help="Print the effective configuration")
    _add_cluster_options(p_cfg_show)
    p_cfg_show.set_defaults(func=_lazy_config_show)

    return parser


def _add_cluster_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base-dir", default=None, help="Cluster state directory")
    p.add_argument(
        "--extra-bin-dir", default=None,
        help="Directory searched first for etcd / Kubernetes binaries",
    )
    p.add_argument("--listen-address", default=None, help="Address all components bind to")
    p.add_argument("--pod-range", default=None, help="Pod network (CIDR)")
    p.add_argument("--service-range", default=None, help="Service network (CIDR)")
    p.add_argument(
        "--port-base", type=int, default=None,
        help="First of the consecutive ports used by the cluster",
    )
    p.add_argument(
        "--sudo", default=None, metavar="CMD",
        help="Privilege escalation command for kubelet / kube-proxy ('' to disable)",
    )


def cli_main() -> None:
    from dotenv import load_dotenv

    load_dotenv()

    parser = build_parser()
    args = parser.parse_args()

    # Apply --data-dir override before any command
    if args.data_dir:
        os.environ["KUBESTRAP_DATA_DIR"] = args.data_dir

    from kubestrap.logging_config import setup_logging
    from kubestrap.paths import get_log_dir

    setup_logging(
        level=os.environ.get("KUBESTRAP_LOG_LEVEL", "INFO"),
        log_dir=get_log_dir(),
    )

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


# ── Lazy import wrappers ──────────────────────────────────


def _lazy_start(args: argparse.Namespace) -> None:
    from cli.commands.cluster import cmd_start

    cmd_start(args)


def _lazy_stop(args: argparse.Namespace) -> None:
    from cli.commands.cluster import cmd_stop

    cmd_stop(args)


def _lazy_config_show(args: argparse.Namespace) -> None:
    from cli.commands.cluster import cmd_config_show

    cmd_config_show(args)
