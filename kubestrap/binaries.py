# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Locate the executables the cluster is built from."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from kubestrap.exceptions import BinaryNotFoundError


def find_binary(name: str, base_dir: Path | None = None, extra_bin_dir: Path | None = None) -> Path:
    """Resolve *name* to an executable path.

    Search order: *extra_bin_dir*, ``<base_dir>/bin``, then ``$PATH``.

    Raises:
        BinaryNotFoundError: If no executable regular file is found.
    """
    for directory in (extra_bin_dir, base_dir / "bin" if base_dir else None):
        if directory is None:
            continue
        candidate = Path(directory) / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate

    found = shutil.which(name)
    if found:
        return Path(found)
    raise BinaryNotFoundError(f"Couldn't find binary '{name}'")
