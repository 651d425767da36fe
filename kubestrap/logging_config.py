# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of Kubestrap, licensed under Apache-2.0.
# See LICENSE for the full license text.

"""Centralized logging configuration for Kubestrap.

Uses structlog in stdlib-compatible mode so that plain
``logging.getLogger()`` calls keep working while the log parsers can emit
structured records (``app``, ``location`` ...) for child-process output.

Provides:
- setup_logging(): structlog + stdlib unified setup (console + file)
- get_process_logger(): bound logger used to re-emit child-process output
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

# Parent of all child-process output loggers
PROCESS_LOGGER_NAME = "kubestrap.proc"


# ── Shared Processors ──────────────────────────────────────────


def _build_shared_processors() -> list:
    """Build the shared processor chain used by both structlog and stdlib."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


# ── Main Setup ─────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: Path | None = None,
    json_file: bool = True,
    verbose: bool = False,
) -> None:
    """Configure logging for the Kubestrap process.

    Args:
        level: Root log level (DEBUG, INFO, WARNING, etc.).
        log_dir: Directory for log files. If None, file logging is disabled.
        json_file: Whether to use JSON format for the file handler.
        verbose: Whether output of the managed processes is shown.  When
            False the ``kubestrap.proc`` hierarchy only lets fatal
            records through.
    """
    shared_processors = _build_shared_processors()

    # ── Configure structlog itself ──────────────────────────
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # ── Configure stdlib root logger ────────────────────────
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    foreign_pre_chain = list(shared_processors)

    console_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(),
        ],
        foreign_pre_chain=foreign_pre_chain,
    )
    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG)
    console.setFormatter(console_formatter)
    root.addHandler(console)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "kubestrap.log"

        if json_file:
            renderer = structlog.processors.JSONRenderer()
        else:
            renderer = structlog.dev.ConsoleRenderer(colors=False)
        file_formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=foreign_pre_chain,
        )

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        root.addHandler(file_handler)

    set_process_output_verbosity(verbose)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def set_process_output_verbosity(verbose: bool) -> None:
    """Show (DEBUG) or hide (CRITICAL) re-emitted child-process output."""
    logging.getLogger(PROCESS_LOGGER_NAME).setLevel(
        logging.DEBUG if verbose else logging.CRITICAL,
    )


def get_process_logger(app: str) -> structlog.stdlib.BoundLogger:
    """Return the structured logger child output of *app* is re-emitted on."""
    return structlog.get_logger(f"{PROCESS_LOGGER_NAME}.{app}").bind(app=app)
