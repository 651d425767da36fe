# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Runtime context handed to every long-lived component at construction."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RuntimeContext:
    """Logger plus the hooks to run when the program is about to exit.

    Components register cleanup here instead of touching process-wide
    exit handlers, so tests can build an isolated context per case.
    """

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("kubestrap"))
    shutdown_hooks: list[Callable[[], None]] = field(default_factory=list)

    def register_shutdown_hook(self, hook: Callable[[], None]) -> None:
        self.shutdown_hooks.append(hook)

    def run_shutdown_hooks(self) -> None:
        """Run every hook in reverse registration order.

        A failing hook is logged and does not prevent the remaining
        hooks from running.
        """
        while self.shutdown_hooks:
            hook = self.shutdown_hooks.pop()
            try:
                hook()
            except Exception:
                self.logger.exception("Shutdown hook %r failed", hook)
