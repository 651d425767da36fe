# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from kubestrap.logparse.base import LineLogParser, LogConsumer
from kubestrap.logparse.etcd import EtcdLogParser
from kubestrap.logparse.klog import KlogParser
from kubestrap.services.kinds import ServiceKind


def parser_for(kind: ServiceKind) -> LineLogParser:
    """Log parser matching the output format of *kind*."""
    if kind is ServiceKind.ETCD:
        return EtcdLogParser(kind.value)
    return KlogParser(kind.value)


__all__ = ["EtcdLogParser", "KlogParser", "LineLogParser", "LogConsumer", "parser_for"]
