from __future__ import annotations

import argparse
import logging
import os
from typing import Optional

from .errors import IdentityStoreError
from .lib.identity_store import DeviceIdentityStore
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .settings import load_settings
from .status import DEFAULT_STATUS_PATH, StatusPublisher
from .workflow import ExitCode, ProvisioningWorkflow

logger = logging.getLogger(__name__)


def list_devices(database_path: str) -> int:
    try:
        with DeviceIdentityStore(database_path) as store:
            ids = store.list_ids()
    except IdentityStoreError as e:
        logger.error("%s", e)
        return int(ExitCode.FAILURE)
    for device_id in ids:
        print(device_id)
    return int(ExitCode.SUCCESS)


def run(
    *,
    database_path: str,
    greengrass_path: str,
    status_path: str = DEFAULT_STATUS_PATH,
    config_path: Optional[str] = None,
    device_id: Optional[str] = None,
    dry_run: bool = False,
) -> int:
    """Run one provisioning attempt and return the process exit code."""

    settings = load_settings(config_path, dry_run=dry_run)
    if settings.dry_run:
        logger.info("Running in dry mode")
    if settings.override_endpoint:
        logger.info("Using override endpoint: %s", settings.override_endpoint)

    status = StatusPublisher(status_path)
    workflow = ProvisioningWorkflow(
        settings,
        database_path=database_path,
        greengrass_root=greengrass_path,
        status=status,
        device_id=device_id,
    )
    outcome = workflow.run()
    logger.info("Provisioning finished: %s (exit %d)", outcome.phase.value, int(outcome.exit_code))
    return int(outcome.exit_code)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="greengrass-provisioner",
        description="Provision this device as a Greengrass core from a local identity database.",
    )
    p.add_argument("-d", "--database-path", required=True, help="Path to the SQLite identity database")
    p.add_argument("-g", "--greengrass-path", required=True, help="Greengrass installation root")
    p.add_argument("-s", "--status-file", default=DEFAULT_STATUS_PATH, help="Path of the JSON status file")
    p.add_argument("-v", "--verbose", action="store_true", help="Log DEBUG output to the console")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to provisioning log")
    p.add_argument("--config", default=None, help="Optional settings file (yaml)")
    p.add_argument("--device-id", default=None, help="Use this device_id instead of hardware identifiers")
    p.add_argument("--dry-run", action="store_true", help="Make no account, download or service changes")
    p.add_argument("--list-devices", action="store_true", help="Print device ids in the database and exit")

    args = p.parse_args(argv)

    if not os.path.isfile(args.database_path):
        p.error(f"database file does not exist: {args.database_path}")
    if not os.path.isdir(args.greengrass_path):
        p.error(f"greengrass directory does not exist: {args.greengrass_path}")

    configure_logging(log_path=args.log, verbose=args.verbose)

    if args.list_devices:
        return list_devices(args.database_path)

    try:
        return run(
            database_path=args.database_path,
            greengrass_path=args.greengrass_path,
            status_path=args.status_file,
            config_path=args.config,
            device_id=args.device_id,
            dry_run=args.dry_run,
        )
    except (OSError, ValueError) as e:
        # Settings could not be loaded; nothing has been published yet.
        logger.error("Invalid settings: %s", e)
        return int(ExitCode.FAILURE)
