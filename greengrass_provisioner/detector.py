from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .models import ProvisioningState, ProvisionState

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("config.yaml", "config.yml", "config.json")
CERT_MARKERS = (".cert.pem", ".crt")
KEY_MARKERS = (".private.key", ".key")

MISSING_CONFIG = "config"
MISSING_CERTS = "certificates"
MISSING_ROOT = "ggc-root"


def _load_config(path: Path) -> Optional[Dict[str, Any]]:
    """Parse a config file; None when unreadable, empty or not a mapping."""

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("Error reading config file %s: %s", str(path), e)
        return None
    if not content.strip():
        logger.warning("Configuration file is empty: %s", str(path))
        return None
    try:
        if path.suffix == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (ValueError, yaml.YAMLError) as e:
        logger.warning("Cannot parse config file %s: %s", str(path), e)
        return None
    return data if isinstance(data, dict) else None


def _section_is_mapping(doc: Dict[str, Any], key: str) -> bool:
    return isinstance(doc.get(key), dict)


class ProvisioningStateDetector:
    """Decide from the installation tree alone whether Greengrass is provisioned.

    A pure read: nothing under the root is created or modified.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.config_dir = self.root / "config"
        self.certs_dir = self.root / "certs"
        self.runtime_root = self.root / "ggc-root"

    def find_config_file(self) -> Optional[Path]:
        for name in CONFIG_FILE_NAMES:
            p = self.config_dir / name
            if p.is_file():
                return p
        return None

    def has_certificates(self) -> bool:
        if not self.certs_dir.is_dir():
            return False
        found_cert = found_key = False
        for entry in self.certs_dir.iterdir():
            if not entry.is_file():
                continue
            if any(m in entry.name for m in CERT_MARKERS):
                found_cert = True
            if any(m in entry.name for m in KEY_MARKERS):
                found_key = True
        logger.debug("Certificates check - cert: %s, key: %s", found_cert, found_key)
        return found_cert and found_key

    def has_runtime_root(self) -> bool:
        return self.runtime_root.is_dir()

    def validate_config(self, path: Path) -> Optional[Dict[str, Any]]:
        doc = _load_config(path)
        if doc is None:
            return None
        if path.suffix == ".json":
            ok = _section_is_mapping(doc, "coreThing") or _section_is_mapping(doc, "system")
        else:
            ok = _section_is_mapping(doc, "system") and _section_is_mapping(doc, "services")
        return doc if ok else None

    @staticmethod
    def thing_name_from(doc: Dict[str, Any]) -> str:
        for section in ("coreThing", "system"):
            sec = doc.get(section)
            if isinstance(sec, dict) and sec.get("thingName"):
                return str(sec["thingName"])
        return "unknown"

    def detect_agent_version(self) -> str:
        if (self.root / "recipes").exists():
            return "v2.x"
        if (self.config_dir / "config.yaml").exists() or (self.config_dir / "config.yml").exists():
            return "v2.x"
        if (self.config_dir / "config.json").exists():
            return "v1.x"
        return "unknown"

    def detect(self) -> ProvisioningState:
        logger.info("Checking Greengrass provisioning status at: %s", str(self.root))

        if not self.root.exists():
            logger.info("Greengrass directory does not exist")
            return ProvisioningState(state=ProvisionState.NOT_PROVISIONED, details="Greengrass directory does not exist")

        config_path = self.find_config_file()
        missing: List[str] = []
        if config_path is None:
            missing.append(MISSING_CONFIG)
        if not self.has_certificates():
            missing.append(MISSING_CERTS)
        if not self.has_runtime_root():
            missing.append(MISSING_ROOT)

        if missing:
            details = f"Missing components: {', '.join(missing)}"
            logger.info("Greengrass is not provisioned. %s", details)
            return ProvisioningState(
                state=ProvisionState.NOT_PROVISIONED,
                details=details,
                missing_components=missing,
            )

        doc = self.validate_config(config_path)  # type: ignore[arg-type]
        if doc is None:
            logger.warning("Greengrass configuration file is invalid: %s", str(config_path))
            return ProvisioningState(
                state=ProvisionState.NOT_PROVISIONED,
                details="Configuration file is invalid or corrupted",
                config_file_path=config_path,
            )

        state = ProvisioningState(
            state=ProvisionState.PROVISIONED,
            details="Greengrass is fully provisioned",
            thing_name=self.thing_name_from(doc),
            agent_version=self.detect_agent_version(),
            config_file_path=config_path,
        )
        logger.info(
            "Greengrass is already provisioned. Thing name: %s, Version: %s", state.thing_name, state.agent_version
        )
        return state


def detect(root: str | Path) -> ProvisioningState:
    return ProvisioningStateDetector(root).detect()
