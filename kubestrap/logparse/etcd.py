# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Parser for etcd output.

Newer etcd releases log JSON objects, older ones use capnslog:

    2018-09-10 12:00:00.000000 I | etcdserver: message
"""

from __future__ import annotations

import json
import re

from kubestrap.logparse.base import LineLogParser

CAPNSLOG_LINE = re.compile(
    r"^\S+\s+\S+\s+(?P<severity>[CEWNIDT])\s+\|\s+(?:(?P<package>[^:\s]+):\s+)?(?P<message>.*)$"
)

CAPNSLOG_LEVELS = {
    "C": "critical",
    "E": "error",
    "W": "warning",
    "N": "info",
    "I": "info",
    "D": "debug",
    "T": "debug",
}

JSON_LEVELS = {
    "debug": "debug",
    "info": "info",
    "warn": "warning",
    "error": "error",
    "dpanic": "critical",
    "panic": "critical",
    "fatal": "critical",
}

# Keys consumed here or clashing with the logger's own arguments
_RESERVED = ("level", "ts", "msg", "caller", "event", "app")


class EtcdLogParser(LineLogParser):
    def __init__(self, app: str = "etcd"):
        super().__init__(app)

    def handle_line(self, line: str) -> None:
        if line.startswith("{") and self._handle_json(line):
            return

        m = CAPNSLOG_LINE.match(line)
        if m:
            level = CAPNSLOG_LEVELS[m.group("severity")]
            fields = {"package": m.group("package")} if m.group("package") else {}
            getattr(self.log, level)(m.group("message"), **fields)
            return

        self.unformatted(line)

    def _handle_json(self, line: str) -> bool:
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            return False
        if not isinstance(record, dict) or "msg" not in record:
            return False

        level = JSON_LEVELS.get(str(record.get("level", "info")).lower(), "info")
        fields = {k: v for k, v in record.items() if k not in _RESERVED}
        if "caller" in record:
            fields["location"] = record["caller"]
        getattr(self.log, level)(str(record["msg"]), **fields)
        return True
