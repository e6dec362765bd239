from __future__ import annotations

import collections
import logging
import re
from pathlib import Path
from typing import List

from ..errors import InstallationFailure
from ..install_context import InstallCtx, InstallStep

logger = logging.getLogger(__name__)

SUCCESS_MARKERS = re.compile(r"connected|established|successful", re.IGNORECASE)
ERROR_MARKERS = re.compile(r"error|failed", re.IGNORECASE)


def tail_lines(path: Path, count: int) -> List[str]:
    with path.open("r", encoding="utf-8", errors="replace") as f:
        return [ln.rstrip("\n") for ln in collections.deque(f, maxlen=count)]


class VerifyConnectionStep:
    step = InstallStep.VERIFYING_CONNECTION
    progress = 90
    message = "Verifying Greengrass connection"

    def run(self, ctx: InstallCtx) -> None:
        if ctx.dry_run:
            logger.info("Dry run: simulating successful connection verification")
            return

        log_file = ctx.agent_log_path
        waited = 0.0
        while not log_file.exists() and waited < ctx.settings.log_wait_seconds:
            ctx.sleep(1.0)
            waited += 1.0

        if not log_file.exists():
            logger.warning("Greengrass log file %s not found, assuming connection is ok", str(log_file))
            return

        recent = tail_lines(log_file, ctx.settings.log_tail_lines)
        if any(SUCCESS_MARKERS.search(ln) for ln in recent):
            logger.info("Greengrass connection verified from logs")
            return

        errors = [ln for ln in recent if ERROR_MARKERS.search(ln)]
        if errors:
            logger.warning("Found errors in Greengrass logs: %s", errors)
            raise InstallationFailure(f"Greengrass log reports errors: {errors[-1]}")

        logger.info("No errors found in logs, assuming connection successful")
