from __future__ import annotations

import logging
import time

from ..errors import InstallationFailure
from ..install_context import InstallCtx, InstallStep

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 1.0


class StartServiceStep:
    step = InstallStep.STARTING_SERVICE
    progress = 80
    message = "Starting Greengrass service"

    def run(self, ctx: InstallCtx) -> None:
        unit = ctx.unit_name

        # A previous instance may or may not be running.
        ctx.run(["systemctl", "stop", unit], check=False)
        ctx.run(["systemctl", "start", unit])

        if ctx.dry_run:
            logger.info("Dry run: treating %s as active", unit)
            return

        timeout = ctx.settings.service_start_timeout_seconds
        deadline = time.monotonic() + timeout
        state = "unknown"
        while True:
            r = ctx.run(["systemctl", "is-active", unit], check=False)
            state = (r.stdout or "").strip() or "unknown"
            if state == "active":
                logger.info("Greengrass service started successfully")
                return
            if state == "failed" or time.monotonic() >= deadline:
                break
            ctx.sleep(POLL_INTERVAL_S)

        raise InstallationFailure(f"Greengrass service is not active after {timeout:g}s (state: {state})")
