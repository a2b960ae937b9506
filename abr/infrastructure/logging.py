"""Run log for the transcoder.

The CLI hands the ``abr`` logger to every component; modules that fall back to
``logging.getLogger(__name__)`` are its children. Each run attaches one file
handler to that logger. Calling :func:`setup_logging` again in the same process
swaps the handler for the new run's file, and the root logger is left alone.
"""

import logging
from pathlib import Path
from typing import Optional

LOGGER_NAME = "abr"
LOG_FILE_NAME = "transcode.log"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class RunLogHandler(logging.FileHandler):
    """File handler installed by setup_logging for one run."""


def resolve_log_file(output_dir: Path, log_path: Optional[Path] = None) -> Path:
    return Path(log_path) if log_path else Path(output_dir) / LOG_FILE_NAME


def setup_logging(output_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """Points the ``abr`` logger at this run's log file and returns it.

    Args:
        output_dir: Directory the HLS package is written to; holds transcode.log
            unless ``log_path`` is given
        debug: If True, DEBUG records (ffmpeg commands, timings) are written too
        log_path: Explicit log file location
    """
    log_file = resolve_log_file(output_dir, log_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if debug else logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    for old in [h for h in logger.handlers if isinstance(h, RunLogHandler)]:
        logger.removeHandler(old)
        old.close()

    handler = RunLogHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
    # The console belongs to the dashboard
    logger.propagate = False

    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")
    return logger
