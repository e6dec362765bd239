from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

DEFAULT_LOG_PATH = "/var/log/greengrass-provisioning.log"
FALLBACK_LOG_NAME = "greengrass-provisioning.log"

_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 3


def _file_handler(path: str) -> logging.Handler:
    Path(os.path.dirname(path) or ".").mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    verbose: bool = False,
    also_console: bool = True,
) -> str:
    """Configure process-wide logging.

    The file handler always records DEBUG; the console follows ``verbose``.
    If the requested log path is not writable (common when not running as
    root) we fall back to a file in the working directory.

    Returns the actual file path being used.
    """

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(logger, "_gg_provisioner_configured", False):
        return getattr(logger, "_gg_provisioner_log_path", log_path)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    try:
        file_handler = _file_handler(log_path)
        chosen_path = log_path
    except OSError:
        chosen_path = str(Path.cwd() / FALLBACK_LOG_NAME)
        file_handler = _file_handler(chosen_path)

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    logger.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(logging.DEBUG if verbose else logging.INFO)
        console.setFormatter(fmt)
        logger.addHandler(console)

    setattr(logger, "_gg_provisioner_configured", True)
    setattr(logger, "_gg_provisioner_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s, verbose=%s)", log_path, chosen_path, verbose
    )
    return chosen_path
