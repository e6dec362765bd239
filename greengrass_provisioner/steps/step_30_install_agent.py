from __future__ import annotations

import logging

from ..install_context import InstallCtx, InstallStep

logger = logging.getLogger(__name__)


class InstallAgentStep:
    step = InstallStep.INSTALLING_AGENT
    progress = 40
    message = "Installing Greengrass nucleus"

    def run(self, ctx: InstallCtx) -> None:
        # Config and credentials are already materialized; the nucleus only
        # needs to own its tree.
        owner = f"{ctx.settings.service_user}:{ctx.settings.service_group}"
        ctx.run(["chown", "-R", owner, str(ctx.root)])
        logger.info("Greengrass nucleus installation prepared (owner %s)", owner)
