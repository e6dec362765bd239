from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from .detector import ProvisioningStateDetector
from .errors import (
    ConfigurationInvalid,
    IdentityNotFound,
    InstallationFailure,
    MaterializationFailure,
    ProvisioningError,
)
from .install_context import InstallStep
from .installer import InstallationDriver
from .lib.connectivity import ConnectivityProbe
from .lib.device_id import candidate_identifiers
from .lib.identity_store import DeviceIdentityStore
from .materializer import ConfigMaterializer
from .models import DeviceIdentityRecord
from .settings import ProvisionerSettings
from .status import Phase, StatusPublisher

logger = logging.getLogger(__name__)

FALLBACK_DEVICE_ID = "default"


class ExitCode(enum.IntEnum):
    SUCCESS = 0
    FAILURE = 1
    NO_CONNECTIVITY = 2


@dataclass(frozen=True)
class WorkflowOutcome:
    exit_code: ExitCode
    phase: Phase
    message: str
    thing_name: Optional[str] = None


def find_identity(
    store: DeviceIdentityStore,
    *,
    device_id: Optional[str] = None,
    identifiers: Optional[Callable[[], List[str]]] = None,
) -> DeviceIdentityRecord:
    """Look up this device's record.

    An explicit ``device_id`` is used as-is. Otherwise each physical
    identifier is tried against the alias index, then the ``default`` record.
    """

    if device_id:
        record = store.lookup_by_id(device_id)
        if record is None:
            raise IdentityNotFound(f"No device configuration found for device_id: {device_id}")
        return record

    for identifier in (identifiers or candidate_identifiers)():
        record = store.lookup_by_identifier(identifier)
        if record is not None:
            logger.info("Matched device identifier %s to device_id %s", identifier, record.device_id)
            return record

    logger.info("No identifier matched; trying device_id '%s'", FALLBACK_DEVICE_ID)
    record = store.lookup_by_id(FALLBACK_DEVICE_ID)
    if record is None:
        raise IdentityNotFound("Device configuration not found in database")
    return record


class ProvisioningWorkflow:
    """Runs one provisioning attempt end to end, publishing status at every transition."""

    def __init__(
        self,
        settings: ProvisionerSettings,
        *,
        database_path: str,
        greengrass_root: str | Path,
        status: StatusPublisher,
        device_id: Optional[str] = None,
        probe_factory: Callable[[ProvisionerSettings], ConnectivityProbe] = ConnectivityProbe.from_settings,
        driver: Optional[InstallationDriver] = None,
        identifiers: Optional[Callable[[], List[str]]] = None,
    ) -> None:
        self.settings = settings
        self.database_path = database_path
        self.root = Path(greengrass_root)
        self.status = status
        self.device_id = device_id
        self._probe_factory = probe_factory
        self._driver = driver
        self._identifiers = identifiers

    def run(self) -> WorkflowOutcome:
        try:
            return self._run()
        except ProvisioningError as e:
            logger.error("Provisioning failed: %s", e)
            self.status.report_error("Provisioning failed", str(e))
            return WorkflowOutcome(ExitCode.FAILURE, Phase.ERROR, str(e))
        except Exception as e:
            logger.exception("Unexpected error during provisioning")
            self.status.report_error("Provisioning failed", f"Unexpected error: {e}")
            return WorkflowOutcome(ExitCode.FAILURE, Phase.ERROR, str(e))

    def _run(self) -> WorkflowOutcome:
        self.status.update(Phase.CHECKING_PROVISIONING)
        state = ProvisioningStateDetector(self.root).detect()
        if state.is_provisioned:
            message = f"Already provisioned as {state.thing_name}"
            self.status.update(Phase.ALREADY_PROVISIONED, message)
            return WorkflowOutcome(ExitCode.SUCCESS, Phase.ALREADY_PROVISIONED, message, state.thing_name)
        logger.info("Not provisioned: %s", state.details)

        self.status.update(Phase.CHECKING_CONNECTIVITY)
        with self._probe_factory(self.settings) as probe:
            conn = probe.probe()
        if not conn.is_connected:
            message = conn.error or "No internet connectivity available"
            self.status.update(Phase.NO_CONNECTIVITY, message)
            return WorkflowOutcome(ExitCode.NO_CONNECTIVITY, Phase.NO_CONNECTIVITY, message)

        self.status.update(Phase.READING_DATABASE)
        with DeviceIdentityStore(self.database_path) as store:
            identity = find_identity(store, device_id=self.device_id, identifiers=self._identifiers)
        missing = identity.missing_fields()
        if missing:
            raise ConfigurationInvalid(
                f"Device {identity.device_id} record is missing required fields: {', '.join(missing)}"
            )

        self.status.update(Phase.GENERATING_CONFIG)
        bundle = ConfigMaterializer(self.root, default_version=self.settings.default_agent_version).materialize(
            identity
        )
        if not bundle.success:
            raise MaterializationFailure(bundle.error or "Failed to generate configuration")

        self.status.update(Phase.PROVISIONING)
        driver = self._driver or InstallationDriver(self.settings, progress=self._on_install_progress)
        result = driver.run(identity, bundle, self.root)
        if not result.success:
            last = result.last_completed.value if result.last_completed else "none"
            raise InstallationFailure(f"{result.error} (last completed step: {last})")

        self.status.update(Phase.COMPLETED)
        return WorkflowOutcome(ExitCode.SUCCESS, Phase.COMPLETED, "Provisioning completed successfully", identity.thing_name)

    def _on_install_progress(self, step: InstallStep, percent: int, message: str) -> None:
        # Installer progress lives inside the PROVISIONING band of the overall status.
        if step is InstallStep.COMPLETED:
            return
        self.status.update(Phase.PROVISIONING, message, 80 + percent * 19 // 100)
