from __future__ import annotations

import dataclasses
import enum
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .lib.files import PUBLIC_FILE_MODE, atomic_write_text

logger = logging.getLogger(__name__)

DEFAULT_STATUS_PATH = "/var/run/greengrass-provisioning.status"

# Highest progress an ERROR document may show.
ERROR_PROGRESS_CEILING = 99


class Phase(str, enum.Enum):
    STARTING = "STARTING"
    CHECKING_PROVISIONING = "CHECKING_PROVISIONING"
    ALREADY_PROVISIONED = "ALREADY_PROVISIONED"
    CHECKING_CONNECTIVITY = "CHECKING_CONNECTIVITY"
    NO_CONNECTIVITY = "NO_CONNECTIVITY"
    READING_DATABASE = "READING_DATABASE"
    GENERATING_CONFIG = "GENERATING_CONFIG"
    PROVISIONING = "PROVISIONING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


_DEFAULT_MESSAGES = {
    Phase.STARTING: "Service is starting",
    Phase.CHECKING_PROVISIONING: "Checking if Greengrass is already provisioned",
    Phase.ALREADY_PROVISIONED: "Greengrass is already provisioned",
    Phase.CHECKING_CONNECTIVITY: "Checking internet connectivity",
    Phase.NO_CONNECTIVITY: "No internet connectivity available",
    Phase.READING_DATABASE: "Reading configuration from database",
    Phase.GENERATING_CONFIG: "Generating Greengrass configuration",
    Phase.PROVISIONING: "Provisioning Greengrass device",
    Phase.COMPLETED: "Provisioning completed successfully",
    Phase.ERROR: "An error occurred during provisioning",
}

# ERROR has no fixed value: it keeps the progress reached when the failure happened.
_DEFAULT_PROGRESS = {
    Phase.STARTING: 5,
    Phase.CHECKING_PROVISIONING: 10,
    Phase.ALREADY_PROVISIONED: 100,
    Phase.CHECKING_CONNECTIVITY: 20,
    Phase.NO_CONNECTIVITY: 20,
    Phase.READING_DATABASE: 40,
    Phase.GENERATING_CONFIG: 60,
    Phase.PROVISIONING: 80,
    Phase.COMPLETED: 100,
}


def default_message(phase: Phase) -> str:
    return _DEFAULT_MESSAGES[phase]


def clamp_progress(value: int) -> int:
    return max(0, min(100, int(value)))


@dataclass(frozen=True)
class WorkflowStatus:
    phase: Phase
    message: str
    progress_percent: int
    timestamp: datetime
    error_details: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "status": self.phase.value,
            "message": self.message,
            "timestamp": self.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "progress_percentage": self.progress_percent,
        }
        if self.error_details:
            doc["error_details"] = self.error_details
        return doc


class StatusPublisher:
    """Owns the workflow status and mirrors every change to a JSON file.

    External monitors poll the status file at arbitrary times, so each write
    goes to a temp file that is atomically renamed over the previous one and
    then made world-readable. Internal callers (the main flow and installer
    progress callbacks) are serialized with a lock.
    """

    def __init__(self, status_path: str = DEFAULT_STATUS_PATH) -> None:
        self.path = Path(status_path)
        self._lock = threading.Lock()
        self._status = WorkflowStatus(
            phase=Phase.STARTING,
            message=default_message(Phase.STARTING),
            progress_percent=0,
            timestamp=datetime.now(timezone.utc),
        )
        with self._lock:
            self._publish_locked()

    def update(self, phase: Phase, message: Optional[str] = None, progress: Optional[int] = None) -> WorkflowStatus:
        with self._lock:
            prev = self._status
            if progress is not None:
                pct = clamp_progress(progress)
            elif phase is Phase.ERROR:
                pct = prev.progress_percent
            else:
                pct = _DEFAULT_PROGRESS[phase]
            if phase is Phase.ERROR:
                pct = min(pct, ERROR_PROGRESS_CEILING)

            self._status = WorkflowStatus(
                phase=phase,
                message=message or default_message(phase),
                progress_percent=pct,
                timestamp=datetime.now(timezone.utc),
                error_details=prev.error_details if phase is Phase.ERROR else None,
            )
            self._publish_locked()
            status = self._status

        logger.info("Status updated: %s - %s", status.phase.value, status.message)
        return status

    def report_error(self, message: str, details: Optional[str] = None) -> WorkflowStatus:
        with self._lock:
            self._status = WorkflowStatus(
                phase=Phase.ERROR,
                message=message or default_message(Phase.ERROR),
                progress_percent=min(self._status.progress_percent, ERROR_PROGRESS_CEILING),
                timestamp=datetime.now(timezone.utc),
                error_details=details or None,
            )
            self._publish_locked()
            status = self._status

        logger.error("Error reported: %s - %s", status.message, details or "")
        return status

    def current(self) -> WorkflowStatus:
        with self._lock:
            return dataclasses.replace(self._status)

    def _publish_locked(self) -> None:
        payload = json.dumps(self._status.to_document(), indent=4) + "\n"
        try:
            atomic_write_text(self.path, payload, mode=PUBLIC_FILE_MODE)
        except OSError as e:
            # The previous document stays in place; the workflow keeps going.
            logger.error("Failed to write status file %s: %s", str(self.path), e)
