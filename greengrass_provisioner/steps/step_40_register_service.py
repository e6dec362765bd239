from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

from ..install_context import InstallCtx, InstallStep
from ..lib.files import PUBLIC_FILE_MODE, atomic_write_text

logger = logging.getLogger(__name__)


def detect_java_home() -> Optional[str]:
    """Follow the ``java`` on PATH through symlinks to its installation root."""

    java = shutil.which("java")
    if not java:
        return None
    return str(Path(java).resolve().parent.parent)


def render_unit(
    *,
    root: Path,
    config_path: Path,
    jar_path: Path,
    user: str,
    group: str,
    java_home: Optional[str],
) -> str:
    java_bin = f"{java_home}/bin/java" if java_home else "/usr/bin/java"
    lines = [
        "[Unit]",
        "Description=Greengrass Core",
        "After=network.target",
        "",
        "[Service]",
        "Type=simple",
        f"PIDFile={root}/alts/loader.pid",
        "RemainAfterExit=no",
        "Restart=on-failure",
        "RestartSec=10",
        f"User={user}",
        f"Group={group}",
    ]
    if java_home:
        lines.append(f'Environment="JAVA_HOME={java_home}"')
    lines += [
        f"ExecStart={java_bin} -Dlog.store=FILE -Droot={root} -jar {jar_path} --config-path {config_path}",
        "StandardOutput=journal",
        "StandardError=journal",
        "",
        "[Install]",
        "WantedBy=multi-user.target",
        "",
    ]
    return "\n".join(lines)


class RegisterServiceStep:
    step = InstallStep.REGISTERING_SERVICE
    progress = 60
    message = "Configuring systemd service"

    def run(self, ctx: InstallCtx) -> None:
        java_home = ctx.settings.java_home or detect_java_home()
        if not java_home:
            logger.warning("JAVA_HOME not found; unit will use /usr/bin/java")

        unit = render_unit(
            root=ctx.root,
            config_path=ctx.config_path,
            jar_path=ctx.jar_path,
            user=ctx.settings.service_user,
            group=ctx.settings.service_group,
            java_home=java_home,
        )

        if ctx.dry_run:
            logger.info("Would write %s", str(ctx.unit_path))
            logger.debug("Unit contents:\n%s", unit)
        else:
            atomic_write_text(ctx.unit_path, unit, mode=PUBLIC_FILE_MODE)

        ctx.run(["systemctl", "daemon-reload"])
        ctx.run(["systemctl", "enable", ctx.unit_name])
        logger.info("Configured systemd service %s", ctx.unit_name)
