"""Structured logging for pipeline execution."""

import logging
import sys
from pathlib import Path

from ..io.logging import get_timestamped_log_path


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name for console output."""

    def __init__(self, fmt: str, datefmt: str, colors: dict):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record):
        original = record.levelname
        color = self.colors.get(original, self.colors["RESET"])
        record.levelname = f"{color}{original}{self.colors['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class PipelineLogger:
    """File and console logging for a workshop run.

    Handlers are attached to the ``scrna_workshop`` logger, so messages from
    every engine (``logging.getLogger(__name__)`` inside the package) land in
    the run log as well.

    Parameters
    ----------
    log_dir : str
        Directory for log files
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_name : str, optional
        Logger name. Default: "scrna_workshop"

    Example
    -------
    >>> logger = PipelineLogger("out/logs", log_level="INFO")
    >>> logger.setup()
    >>> logger.log_stage_start("qc", "Quality control")
    >>> logger.log_stage_complete("qc", 3.2)
    """

    COLORS = {
        "DEBUG": "\033[0;36m",  # Cyan
        "INFO": "\033[0;34m",  # Blue
        "WARNING": "\033[1;33m",  # Yellow
        "ERROR": "\033[0;31m",  # Red
        "CRITICAL": "\033[1;31m",  # Bold Red
        "RESET": "\033[0m",
    }

    def __init__(
        self,
        log_dir: str,
        log_level: str = "INFO",
        log_name: str = "scrna_workshop",
    ):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.log_file = get_timestamped_log_path(self.log_dir / "workshop.log")

        self.log_level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)
        self._handlers = []

    def setup(self, console: bool = True) -> None:
        """Attach a file handler and, optionally, a coloured console handler."""
        file_handler = logging.FileHandler(self.log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        self._handlers.append(file_handler)

        if console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)
            console_handler.setFormatter(
                ColoredFormatter(
                    fmt="%(asctime)s - %(levelname)s - %(message)s",
                    datefmt="%H:%M:%S",
                    colors=self.COLORS,
                )
            )
            self._handlers.append(console_handler)

        for handler in self._handlers:
            self.logger.addHandler(handler)
        self.logger.propagate = False

    def close(self) -> None:
        """Detach and close the handlers added by setup()."""
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers = []
        self.logger.propagate = True

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        """Log the start of a pipeline stage."""
        separator = "=" * 80
        self.logger.info(separator)
        self.logger.info("Starting stage %s: %s", stage_id, stage_name)
        self.logger.info(separator)

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        """Log successful completion of a stage."""
        self.logger.info(
            "Stage %s completed successfully in %s", stage_id, self.format_duration(duration)
        )

    def log_stage_error(self, stage_id: str, error: str) -> None:
        """Log a stage error."""
        self.logger.error("Stage %s failed: %s", stage_id, error)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format duration in seconds as "45.2s", "1m 23s" or "2h 15m"."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        if seconds < 3600:
            return f"{int(seconds // 60)}m {int(seconds % 60)}s"
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"
