# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Parser for the klog format used by the Kubernetes components.

    I0102 15:04:05.123456    1234 server.go:42] message
"""

from __future__ import annotations

import re

from kubestrap.logparse.base import LineLogParser

KLOG_LINE = re.compile(
    r"^(?P<severity>[IWEFDNS])(?P<date>\d{4})\s+(?P<time>\d{2}:\d{2}:\d{2}\.\d+)"
    r"\s+(?P<thread>\d+)\s+(?P<location>[^\]\s]+)\]\s?(?P<message>.*)$"
)

# go-restful writes its own format
RESTFUL_LINE = re.compile(
    r"^\[restful\]\s+\S+\s+\S+\s+(?P<location>[^:\s]+:\d+):\s+"
    r"(?:\[restful/swagger\]\s+)?(?P<message>.*)$"
)

SEVERITY_LEVELS = {
    "I": "info",
    "N": "info",
    "W": "warning",
    "E": "error",
    "S": "error",
    "F": "critical",
    "D": "debug",
}


class KlogParser(LineLogParser):
    """Re-emits klog lines at their own severity."""

    def handle_line(self, line: str) -> None:
        m = KLOG_LINE.match(line)
        if m:
            level = SEVERITY_LEVELS[m.group("severity")]
            getattr(self.log, level)(
                m.group("message"), location=m.group("location"), thread=int(m.group("thread")),
            )
            return

        m = RESTFUL_LINE.match(line)
        if m:
            self.log.info(m.group("message"), location=m.group("location"), component="restful")
            return

        self.unformatted(line)
