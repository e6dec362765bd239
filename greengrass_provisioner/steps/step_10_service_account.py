from __future__ import annotations

import logging

from ..errors import InstallationFailure
from ..install_context import InstallCtx, InstallStep

logger = logging.getLogger(__name__)


class EnsureServiceAccountStep:
    step = InstallStep.INITIALIZING
    progress = 0
    message = "Initializing provisioning process"

    def run(self, ctx: InstallCtx) -> None:
        user = ctx.settings.service_user
        group = ctx.settings.service_group

        if ctx.dry_run:
            logger.info("Would ensure system account %s:%s", user, group)
            return

        if ctx.run(["id", "-u", user], check=False).ok:
            logger.info("Greengrass user %s already exists", user)
            return

        # Group may already exist from an earlier partial run.
        r = ctx.run(["groupadd", "--system", group], check=False)
        if not r.ok:
            logger.info("groupadd %s returned %s (group may exist)", group, r.returncode)

        r = ctx.run(["useradd", "--system", "--gid", group, "--shell", "/bin/false", user], check=False)
        if not r.ok:
            raise InstallationFailure(f"Failed to create Greengrass user {user}: {r.stderr.strip()}")

        logger.info("Created Greengrass user %s and group %s", user, group)
