from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

from .errors import ConfigurationInvalid, MaterializationFailure
from .lib.files import PRIVATE_FILE_MODE, SHARED_FILE_MODE, atomic_write_text, set_mode
from .models import ConfigBundle, DeviceIdentityRecord
from .settings import DEFAULT_AGENT_VERSION

logger = logging.getLogger(__name__)

NUCLEUS_COMPONENT = "aws.greengrass.Nucleus"
ROOT_CA_FILE = "root.ca.pem"
CONFIG_FILE = "config.yaml"

SUBDIRS = ("config", "certs", "logs", "work", "packages", "deployments", "ggc-root")
RESTRICTED_DIR_MODE = 0o750

_LOGGING_BLOCK = {
    "level": "INFO",
    "fileSizeKB": 1024,
    "totalLogsSizeKB": 25600,
    "format": "JSON",
}

_DEPLOYMENT_POLLING = {
    "deploymentPollingFrequency": 15,
    "componentStoreMaxSizeBytes": 10737418240,
    "deploymentStatusKeepAliveFrequency": 60,
}


def certificate_file_name(thing_name: str) -> str:
    return f"{thing_name}.cert.pem"


def private_key_file_name(thing_name: str) -> str:
    return f"{thing_name}.private.key"


def render_config(identity: DeviceIdentityRecord, root: Path, *, default_version: str = DEFAULT_AGENT_VERSION) -> str:
    """Render the Greengrass v2 ``config.yaml`` for ``identity`` rooted at ``root``.

    Optional blocks (MQTT port, network proxy, deployment polling) only appear
    when the identity carries the corresponding field.
    """

    root_s = str(root)
    nucleus_cfg: Dict[str, Any] = {
        "awsRegion": identity.aws_region,
        "iotRoleAlias": identity.role_alias,
        "iotDataEndpoint": identity.iot_data_endpoint,
        "iotCredEndpoint": identity.role_alias_endpoint,
    }
    if identity.mqtt_port is not None:
        nucleus_cfg["mqtt"] = {"port": int(identity.mqtt_port)}
    if identity.proxy_url:
        nucleus_cfg["networkProxy"] = {"proxy": {"url": identity.proxy_url}}
    nucleus_cfg["logging"] = dict(_LOGGING_BLOCK)
    if identity.deployment_group:
        nucleus_cfg.update(_DEPLOYMENT_POLLING)

    doc: Dict[str, Any] = {
        "system": {
            "certificateFilePath": f"{root_s}/certs/{certificate_file_name(identity.thing_name)}",
            "privateKeyPath": f"{root_s}/certs/{private_key_file_name(identity.thing_name)}",
            "rootCaPath": f"{root_s}/certs/{ROOT_CA_FILE}",
            "rootpath": root_s,
            "thingName": identity.thing_name,
        },
        "services": {
            NUCLEUS_COMPONENT: {
                "version": identity.agent_version or default_version,
                "configuration": nucleus_cfg,
            }
        },
    }
    return "---\n" + yaml.safe_dump(doc, sort_keys=False, default_flow_style=False)


def resolve_root_ca(material: str) -> str:
    """Root CA material is a path to a PEM file when one exists there, else inline PEM."""

    candidate = material.strip()
    if candidate and "\n" not in candidate and os.path.isfile(candidate):
        logger.debug("Reading root CA from %s", candidate)
        return Path(candidate).read_text(encoding="utf-8")
    return material


class ConfigMaterializer:
    """Write an identity record out as a Greengrass config bundle.

    Steps run fail-fast in order; a failure leaves whatever was already
    written in place and is reported through ``ConfigBundle.error``.
    Re-materializing overwrites the previous bundle.
    """

    def __init__(self, root: str | Path, *, default_version: str = DEFAULT_AGENT_VERSION) -> None:
        self.root = Path(root)
        self.default_version = default_version
        self.config_dir = self.root / "config"
        self.certs_dir = self.root / "certs"

    def materialize(self, identity: DeviceIdentityRecord) -> ConfigBundle:
        logger.info("Generating Greengrass configuration for device: %s", identity.device_id)
        try:
            missing = identity.missing_fields()
            if missing:
                raise ConfigurationInvalid(f"Identity record missing required fields: {', '.join(missing)}")
            self.create_directories()
            cert_path, key_path, ca_path = self.write_credentials(identity)
            config_path = self.write_config(identity)
            self.validate()
        except (MaterializationFailure, ConfigurationInvalid) as e:
            logger.error("Materialization failed: %s", e)
            return ConfigBundle(success=False, error=str(e))

        logger.info("Successfully generated Greengrass configuration under %s", str(self.root))
        return ConfigBundle(
            success=True,
            config_file_path=config_path,
            certificate_path=cert_path,
            private_key_path=key_path,
            root_ca_path=ca_path,
        )

    def create_directories(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            for name in SUBDIRS:
                (self.root / name).mkdir(parents=True, exist_ok=True)
            set_mode(self.root, RESTRICTED_DIR_MODE)
            set_mode(self.certs_dir, RESTRICTED_DIR_MODE)
        except OSError as e:
            raise MaterializationFailure(f"Failed to create directory structure: {e}") from e
        logger.debug("Created Greengrass directory structure")

    def write_credentials(self, identity: DeviceIdentityRecord):
        cert_path = self.certs_dir / certificate_file_name(identity.thing_name)
        key_path = self.certs_dir / private_key_file_name(identity.thing_name)
        ca_path = self.certs_dir / ROOT_CA_FILE
        try:
            atomic_write_text(cert_path, identity.certificate_pem, mode=SHARED_FILE_MODE)
            atomic_write_text(key_path, identity.private_key_pem, mode=PRIVATE_FILE_MODE)
            atomic_write_text(ca_path, resolve_root_ca(identity.root_ca_material), mode=SHARED_FILE_MODE)
        except (OSError, UnicodeDecodeError) as e:
            raise MaterializationFailure(f"Failed to write certificates: {e}") from e
        logger.debug("Wrote certificates to %s", str(self.certs_dir))
        return cert_path, key_path, ca_path

    def write_config(self, identity: DeviceIdentityRecord) -> Path:
        config_path = self.config_dir / CONFIG_FILE
        try:
            content = render_config(identity, self.root, default_version=self.default_version)
            atomic_write_text(config_path, content, mode=SHARED_FILE_MODE)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise MaterializationFailure(f"Failed to generate {CONFIG_FILE}: {e}") from e
        logger.debug("Generated Greengrass v2 configuration file %s", str(config_path))
        return config_path

    def validate(self) -> None:
        if not (self.config_dir / CONFIG_FILE).is_file():
            raise MaterializationFailure(f"{CONFIG_FILE} does not exist")
        has_credentials = any(
            p.is_file() and p.suffix in {".pem", ".key"} for p in self.certs_dir.iterdir()
        )
        if not has_credentials:
            raise MaterializationFailure("No certificates found in certs directory")
        logger.debug("Configuration validation passed")


def materialize(identity: DeviceIdentityRecord, root: str | Path) -> ConfigBundle:
    return ConfigMaterializer(root).materialize(identity)
