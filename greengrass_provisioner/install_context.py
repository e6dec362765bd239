from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

import requests

from .lib.command import CmdResult, run_cmd
from .models import ConfigBundle, DeviceIdentityRecord
from .settings import ProvisionerSettings


class InstallStep(str, enum.Enum):
    INITIALIZING = "INITIALIZING"
    ACQUIRING_AGENT = "ACQUIRING_AGENT"
    INSTALLING_AGENT = "INSTALLING_AGENT"
    REGISTERING_SERVICE = "REGISTERING_SERVICE"
    STARTING_SERVICE = "STARTING_SERVICE"
    VERIFYING_CONNECTION = "VERIFYING_CONNECTION"
    COMPLETED = "COMPLETED"


ProgressCallback = Callable[[InstallStep, int, str], None]
Runner = Callable[..., CmdResult]


@dataclass(frozen=True)
class InstallCtx:
    settings: ProvisionerSettings
    identity: DeviceIdentityRecord
    bundle: ConfigBundle
    root: Path
    session: requests.Session
    dry_run: bool = False
    runner: Runner = run_cmd
    sleep: Callable[[float], None] = time.sleep

    def run(self, argv: Sequence[str], *, check: bool = True) -> CmdResult:
        return self.runner(argv, check=check, dry_run=self.dry_run)

    @property
    def lib_dir(self) -> Path:
        return self.root / "lib"

    @property
    def jar_path(self) -> Path:
        return self.lib_dir / "Greengrass.jar"

    @property
    def config_path(self) -> Path:
        return self.bundle.config_file_path or (self.root / "config" / "config.yaml")

    @property
    def agent_log_path(self) -> Path:
        return self.root / "logs" / "greengrass.log"

    @property
    def agent_version(self) -> str:
        return self.identity.agent_version or self.settings.default_agent_version

    @property
    def unit_name(self) -> str:
        return f"{self.settings.service_name}.service"

    @property
    def unit_path(self) -> Path:
        return Path(self.settings.systemd_unit_dir) / self.unit_name
