from __future__ import annotations

import logging
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

import requests

from .install_context import InstallCtx, InstallStep, ProgressCallback, Runner
from .lib.command import run_cmd
from .models import ConfigBundle, DeviceIdentityRecord
from .settings import ProvisionerSettings
from .steps import (
    AcquireAgentStep,
    EnsureServiceAccountStep,
    InstallAgentStep,
    RegisterServiceStep,
    StartServiceStep,
    VerifyConnectionStep,
)

logger = logging.getLogger(__name__)

COMPLETED_MESSAGE = "Provisioning completed successfully"

# Anything a step can raise that means "this step failed" rather than a bug.
_STEP_FAILURES = (RuntimeError, OSError, requests.exceptions.RequestException, zipfile.BadZipFile)


class Step(Protocol):
    """A single installation step; raises to abort the sequence."""

    step: InstallStep
    progress: int
    message: str

    def run(self, ctx: InstallCtx) -> None:
        ...


@dataclass(frozen=True)
class InstallResult:
    success: bool
    last_completed: Optional[InstallStep] = None
    error: Optional[str] = None
    service_name: Optional[str] = None

    @classmethod
    def succeeded(cls, service_name: str) -> "InstallResult":
        return cls(success=True, last_completed=InstallStep.COMPLETED, service_name=service_name)

    @classmethod
    def failed(cls, last_completed: Optional[InstallStep], error: str) -> "InstallResult":
        return cls(success=False, last_completed=last_completed, error=error)


def build_steps() -> List[Step]:
    return [
        EnsureServiceAccountStep(),
        AcquireAgentStep(),
        InstallAgentStep(),
        RegisterServiceStep(),
        StartServiceStep(),
        VerifyConnectionStep(),
    ]


class InstallationDriver:
    """Runs the installation steps strictly in order.

    Progress is reported before each step's side effect. The first failure
    stops the sequence; the result carries the last step that completed.
    """

    def __init__(
        self,
        settings: ProvisionerSettings,
        *,
        progress: Optional[ProgressCallback] = None,
        runner: Runner = run_cmd,
        sleep: Callable[[float], None] = time.sleep,
        session: Optional[requests.Session] = None,
        steps: Optional[Sequence[Step]] = None,
    ) -> None:
        self.settings = settings
        self._progress = progress
        self._runner = runner
        self._sleep = sleep
        self._session = session
        self._steps = list(steps) if steps is not None else build_steps()

    @property
    def dry_run(self) -> bool:
        return self.settings.dry_run

    def _report(self, step: InstallStep, percent: int, message: str) -> None:
        logger.info("[%s] %d%% %s", step.value, percent, message)
        if self._progress is not None:
            self._progress(step, percent, message)

    def run(self, identity: DeviceIdentityRecord, bundle: ConfigBundle, root: Path) -> InstallResult:
        owns_session = self._session is None
        session = self._session or requests.Session()
        try:
            ctx = InstallCtx(
                settings=self.settings,
                identity=identity,
                bundle=bundle,
                root=Path(root),
                session=session,
                dry_run=self.dry_run,
                runner=self._runner,
                sleep=self._sleep,
            )
            if ctx.dry_run:
                logger.info("Installation running in dry mode; no host changes will be made")

            last: Optional[InstallStep] = None
            for step in self._steps:
                self._report(step.step, step.progress, step.message)
                try:
                    step.run(ctx)
                except _STEP_FAILURES as e:
                    logger.error("Installation step %s failed: %s", step.step.value, e)
                    return InstallResult.failed(last, str(e))
                last = step.step

            self._report(InstallStep.COMPLETED, 100, COMPLETED_MESSAGE)
            return InstallResult.succeeded(ctx.unit_name)
        finally:
            if owns_session:
                session.close()
