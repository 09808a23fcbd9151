from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import Optional

LOGGER_NAME = "game_ml"


class _RunContextFilter(logging.Filter):
    def __init__(self, *, run_id: str, pipeline: str) -> None:
        super().__init__()
        self._run_id = run_id
        self._pipeline = pipeline

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (filter)
        # Formatter fields must exist even for records emitted by library modules.
        if not hasattr(record, "run_id"):
            record.run_id = self._run_id
        if not hasattr(record, "pipeline"):
            record.pipeline = self._pipeline
        if not hasattr(record, "step"):
            record.step = "-"
        if not hasattr(record, "coordinate"):
            record.coordinate = "-"
        return True


def _find_file_handler(logger: logging.Logger, *, log_path: Path) -> Optional[logging.FileHandler]:
    for h in logger.handlers:
        if isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path:
            return h
    return None


def _find_stderr_handler(logger: logging.Logger) -> Optional[logging.StreamHandler]:
    for h in logger.handlers:
        if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr:
            return h
    return None


def _install(handler: logging.Handler, *, level: int, formatter: logging.Formatter, ctx_filter: logging.Filter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.filters = [f for f in handler.filters if not isinstance(f, _RunContextFilter)]
    handler.addFilter(ctx_filter)


def configure_run_logger(
    *,
    logs_dir: Path,
    run_id: str,
    pipeline: str,
    level: str = "INFO",
) -> logging.Logger:
    """
    Configure the package logger for one training run. Records go to
      - <logs_dir>/run.log
      - stderr

    Calling it again for the same log file reuses the existing handlers, so repeated
    runs in one process (tests, notebooks) don't duplicate output.
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = (logs_dir / "run.log").resolve()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    fmt = "%(asctime)s %(levelname)s [%(pipeline)s %(run_id)s %(step)s %(coordinate)s] %(message)s"
    formatter = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime

    ctx_filter = _RunContextFilter(run_id=run_id, pipeline=pipeline)

    fh = _find_file_handler(logger, log_path=log_path)
    if fh is None:
        fh = logging.FileHandler(log_path, encoding="utf-8")
        logger.addHandler(fh)
    _install(fh, level=logger.level, formatter=formatter, ctx_filter=ctx_filter)

    sh = _find_stderr_handler(logger)
    if sh is None:
        sh = logging.StreamHandler(stream=sys.stderr)
        logger.addHandler(sh)
    _install(sh, level=logger.level, formatter=formatter, ctx_filter=ctx_filter)

    return logger


def get_step_logger(base_logger: logging.Logger, *, step: str) -> logging.LoggerAdapter:
    return logging.LoggerAdapter(base_logger, extra={"step": step})


def get_coordinate_logger(base_logger: logging.Logger, *, step: str, coordinate: str) -> logging.LoggerAdapter:
    return logging.LoggerAdapter(base_logger, extra={"step": step, "coordinate": coordinate})
