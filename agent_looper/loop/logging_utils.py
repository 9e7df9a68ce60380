"""Centralized logging utilities for agent_looper with package filtering and context support."""

from __future__ import annotations

import logging
from typing import List, Optional

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"
PACKAGE_NAME = "agent_looper"


class PackageFilter(logging.Filter):
    """Filter to only allow logs from specified packages."""

    def __init__(self, packages: List[str]) -> None:
        super().__init__()
        self.packages = packages

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log records to only allow specified packages.

        Args:
            record: LogRecord to filter

        Returns:
            True if record should be logged, False otherwise
        """
        return any(record.name.startswith(pkg) for pkg in self.packages)


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging with a RichHandler.

    Args:
        verbose: Enable debug level logging
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    handler = RichHandler(level=log_level, show_path=verbose, markup=False)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logging.basicConfig(level=log_level, handlers=[handler], force=True)


class LoopLogger:
    """Package logger with filtering and controller context.

    Provides a singleton instance so the agent_looper package logs through one
    consistently configured handler.
    """

    _instance: Optional["LoopLogger"] = None

    def __init__(self, verbose: bool = False) -> None:
        self._verbose = verbose
        self._context: Optional[object] = None

        self.logger = logging.getLogger(PACKAGE_NAME)
        self.logger.setLevel(logging.DEBUG if verbose else logging.INFO)
        self.logger.handlers.clear()

        handler = RichHandler(level=logging.DEBUG if verbose else logging.INFO, markup=False)
        handler.addFilter(PackageFilter([PACKAGE_NAME]))
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

        self.logger.addHandler(handler)
        self.logger.propagate = False

    @classmethod
    def get(cls, verbose: bool = False) -> "LoopLogger":
        """Get or create the singleton LoopLogger instance.

        Args:
            verbose: Whether to enable DEBUG level logging

        Returns:
            The singleton LoopLogger instance
        """
        if cls._instance is None or cls._instance._verbose != verbose:
            cls._instance = LoopLogger(verbose)
        return cls._instance

    def set_context(self, context: Optional[object]) -> None:
        """Log a one-line description of the controller being driven.

        Args:
            context: LoopController or similar exposing agent_names,
                judge_name and max_iterations
        """
        self._context = context
        if context is None:
            return

        agents = getattr(context, "agent_names", [])
        judge = getattr(context, "judge_name", "unknown")
        max_iterations = getattr(context, "max_iterations", "unknown")
        self.logger.info(
            f"Loop Context: agents={','.join(agents)}, judge={judge}, "
            f"max_iterations={max_iterations}"
        )

    def verbose_logging_enabled(self) -> bool:
        return self._verbose
