# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Service manager readiness notification (``sd_notify`` protocol)."""

from __future__ import annotations

import logging
import os
import socket

logger = logging.getLogger(__name__)


def sd_notify(state: str) -> bool:
    """Send *state* (e.g. ``READY=1``) to ``$NOTIFY_SOCKET``.

    Returns False when not running under a service manager or when the
    datagram could not be delivered.
    """
    address = os.environ.get("NOTIFY_SOCKET")
    if not address:
        return False
    if address.startswith("@"):
        address = "\0" + address[1:]  # abstract namespace

    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.connect(address)
            sock.sendall(state.encode("utf-8"))
    except OSError as e:
        logger.warning("sd_notify(%s) failed: %s", state, e)
        return False
    logger.debug("sd_notify: %s", state)
    return True
