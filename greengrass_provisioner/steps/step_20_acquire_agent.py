from __future__ import annotations

import logging
import os
import zipfile
from pathlib import Path

import requests

from ..errors import InstallationFailure
from ..install_context import InstallCtx, InstallStep

logger = logging.getLogger(__name__)

JAR_MEMBER = "lib/Greengrass.jar"
PLACEHOLDER_JAR = "Mock Greengrass JAR for testing\n"
_CHUNK = 1024 * 64


def distribution_url(template: str, version: str) -> str:
    return template.format(version=version)


def download_file(session: requests.Session, url: str, dest: Path, *, timeout: tuple) -> None:
    """Stream ``url`` into ``dest`` through a ``.part`` file removed on any failure."""

    part = dest.with_name(dest.name + ".part")
    try:
        with session.get(url, stream=True, timeout=timeout) as resp:
            resp.raise_for_status()
            with part.open("wb") as f:
                for chunk in resp.iter_content(chunk_size=_CHUNK):
                    if chunk:
                        f.write(chunk)
        os.replace(part, dest)
    except (requests.exceptions.RequestException, OSError) as e:
        if part.exists():
            part.unlink()
        raise InstallationFailure(f"Failed to download {url}: {e}") from e


def extract_jar(archive: Path, jar_path: Path) -> None:
    try:
        with zipfile.ZipFile(archive) as zf:
            names = zf.namelist()
            member = JAR_MEMBER if JAR_MEMBER in names else next(
                (n for n in names if n.endswith("/Greengrass.jar") or n == "Greengrass.jar"), None
            )
            if member is None:
                raise InstallationFailure(f"{archive.name} does not contain Greengrass.jar")
            tmp = jar_path.with_name(jar_path.name + ".part")
            with zf.open(member) as src, tmp.open("wb") as dst:
                while True:
                    buf = src.read(_CHUNK)
                    if not buf:
                        break
                    dst.write(buf)
            os.replace(tmp, jar_path)
    except zipfile.BadZipFile as e:
        raise InstallationFailure(f"Downloaded archive {archive} is corrupt: {e}") from e


class AcquireAgentStep:
    step = InstallStep.ACQUIRING_AGENT
    progress = 20
    message = "Downloading Greengrass nucleus"

    def run(self, ctx: InstallCtx) -> None:
        jar = ctx.jar_path
        if jar.exists():
            logger.info("Greengrass nucleus already present at %s, skipping download", str(jar))
            return

        ctx.lib_dir.mkdir(parents=True, exist_ok=True)
        version = ctx.agent_version

        if ctx.dry_run:
            logger.info("Dry run: writing placeholder nucleus %s (version %s)", str(jar), version)
            jar.write_text(PLACEHOLDER_JAR, encoding="utf-8")
            return

        url = distribution_url(ctx.settings.distribution_url, version)
        archive = ctx.lib_dir / f"greengrass-{version}.zip"
        timeout = (ctx.settings.timeout_seconds / 2, ctx.settings.download_timeout_seconds)

        logger.info("Downloading Greengrass nucleus version %s from %s", version, url)
        download_file(ctx.session, url, archive, timeout=timeout)
        extract_jar(archive, jar)
        logger.info("Installed nucleus %s to %s", version, str(jar))
