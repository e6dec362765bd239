from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

_REQUIRED_FIELDS = (
    "device_id",
    "thing_name",
    "iot_data_endpoint",
    "aws_region",
    "root_ca_material",
    "certificate_pem",
    "private_key_pem",
    "role_alias",
    "role_alias_endpoint",
)


@dataclass(frozen=True)
class DeviceIdentityRecord:
    """Enrollment data for one physical device, as stored out-of-band.

    ``root_ca_material`` is either inline PEM text or a path to a PEM file; it
    is only resolved when the record is materialized.
    """

    device_id: str
    thing_name: str
    iot_data_endpoint: str
    aws_region: str
    root_ca_material: str
    certificate_pem: str
    private_key_pem: str
    role_alias: str
    role_alias_endpoint: str
    agent_version: Optional[str] = None
    deployment_group: Optional[str] = None
    initial_components: Tuple[str, ...] = ()
    proxy_url: Optional[str] = None
    mqtt_port: Optional[int] = None
    custom_domain: Optional[str] = None

    def missing_fields(self) -> List[str]:
        return [name for name in _REQUIRED_FIELDS if not str(getattr(self, name) or "").strip()]

    def is_usable(self) -> bool:
        return not self.missing_fields()


@dataclass(frozen=True)
class ConfigBundle:
    success: bool
    config_file_path: Optional[Path] = None
    certificate_path: Optional[Path] = None
    private_key_path: Optional[Path] = None
    root_ca_path: Optional[Path] = None
    error: Optional[str] = None


class ProvisionState(str, enum.Enum):
    NOT_PROVISIONED = "NOT_PROVISIONED"
    PROVISIONED = "PROVISIONED"


@dataclass(frozen=True)
class ProvisioningState:
    state: ProvisionState
    details: str
    thing_name: Optional[str] = None
    agent_version: Optional[str] = None
    config_file_path: Optional[Path] = None
    missing_components: List[str] = field(default_factory=list)

    @property
    def is_provisioned(self) -> bool:
        return self.state is ProvisionState.PROVISIONED
