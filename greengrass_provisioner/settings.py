from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

DEFAULT_ENDPOINTS = [
    "https://iot.us-east-1.amazonaws.com",
    "https://iot.us-west-2.amazonaws.com",
    "https://greengrass.us-east-1.amazonaws.com",
    "https://www.amazontrust.com",
]

DEFAULT_AGENT_VERSION = "2.9.0"
DEFAULT_DISTRIBUTION_URL = "https://d2s8p88vqu9w66.cloudfront.net/releases/greengrass-{version}.zip"


@dataclass(frozen=True)
class ProvisionerSettings:
    raw: Dict[str, Any] = field(default_factory=dict)

    def _section(self, name: str) -> Dict[str, Any]:
        return self.raw.get(name) or {}

    @property
    def dry_run(self) -> bool:
        return bool(self.raw.get("dry_run", False))

    # connectivity

    @property
    def timeout_seconds(self) -> float:
        return float(self._section("connectivity").get("timeout_seconds") or 10)

    @property
    def dns_host(self) -> str:
        return str(self._section("connectivity").get("dns_host") or "amazonaws.com")

    @property
    def reference_url(self) -> str:
        return str(self._section("connectivity").get("reference_url") or "https://www.amazontrust.com")

    @property
    def endpoints(self) -> List[str]:
        return list(self._section("connectivity").get("endpoints") or DEFAULT_ENDPOINTS)

    @property
    def override_endpoint(self) -> Optional[str]:
        v = self._section("connectivity").get("override_endpoint")
        return str(v) if v else None

    # install

    @property
    def service_user(self) -> str:
        return str(self._section("install").get("service_user") or "ggc_user")

    @property
    def service_group(self) -> str:
        return str(self._section("install").get("service_group") or "ggc_group")

    @property
    def service_name(self) -> str:
        return str(self._section("install").get("service_name") or "greengrass")

    @property
    def default_agent_version(self) -> str:
        return str(self._section("install").get("default_agent_version") or DEFAULT_AGENT_VERSION)

    @property
    def distribution_url(self) -> str:
        return str(self._section("install").get("distribution_url") or DEFAULT_DISTRIBUTION_URL)

    @property
    def download_timeout_seconds(self) -> float:
        return float(self._section("install").get("download_timeout_seconds") or 300)

    @property
    def java_home(self) -> Optional[str]:
        v = self._section("install").get("java_home")
        return str(v) if v else None

    @property
    def systemd_unit_dir(self) -> str:
        return str(self._section("install").get("systemd_unit_dir") or "/etc/systemd/system")

    @property
    def service_start_timeout_seconds(self) -> float:
        v = self._section("install").get("service_start_timeout_seconds")
        return float(30 if v is None else v)

    @property
    def log_wait_seconds(self) -> float:
        v = self._section("install").get("log_wait_seconds")
        return float(30 if v is None else v)

    @property
    def log_tail_lines(self) -> int:
        return int(self._section("install").get("log_tail_lines") or 50)


def _normalize_endpoint(endpoint: str) -> str:
    if "://" in endpoint:
        return endpoint
    return f"http://{endpoint}"


def apply_env_overrides(raw: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Apply TEST_MODE / IOT_ENDPOINT on top of file settings.

    TEST_MODE=true switches on dry-run. Only in test mode does IOT_ENDPOINT
    replace the connectivity candidate list with that single endpoint.
    """

    merged = dict(raw)
    test_mode = str(environ.get("TEST_MODE", "")).strip().lower() == "true"
    if test_mode:
        merged["dry_run"] = True
        endpoint = str(environ.get("IOT_ENDPOINT", "")).strip()
        if endpoint:
            conn = dict(merged.get("connectivity") or {})
            conn["override_endpoint"] = _normalize_endpoint(endpoint)
            merged["connectivity"] = conn
    return merged


def load_settings(
    path: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    dry_run: bool = False,
) -> ProvisionerSettings:
    raw: Dict[str, Any] = {}
    if path:
        p = Path(path)
        if p.suffix.lower() not in {".yaml", ".yml"}:
            raise ValueError(f"Settings file must be YAML: {path}")
        try:
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Cannot parse settings file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ValueError(f"{path} must contain a mapping/object")

    raw = apply_env_overrides(raw, os.environ if environ is None else environ)
    if dry_run:
        raw["dry_run"] = True
    return ProvisionerSettings(raw=raw)
