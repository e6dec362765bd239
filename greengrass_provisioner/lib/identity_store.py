from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy import ForeignKey, Integer, String, Text, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from ..errors import IdentityStoreError
from ..models import DeviceIdentityRecord

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class DeviceConfigRow(Base):
    __tablename__ = "device_config"

    device_id: Mapped[str] = mapped_column(Text, primary_key=True)
    thing_name: Mapped[str] = mapped_column(Text, nullable=False)
    iot_endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    aws_region: Mapped[str] = mapped_column(Text, nullable=False)
    root_ca_path: Mapped[str] = mapped_column(Text, nullable=False)
    certificate_pem: Mapped[str] = mapped_column(Text, nullable=False)
    private_key_pem: Mapped[str] = mapped_column(Text, nullable=False)
    role_alias: Mapped[str] = mapped_column(Text, nullable=False)
    role_alias_endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    nucleus_version: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deployment_group: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    initial_components: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    proxy_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mqtt_port: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    custom_domain: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class DeviceIdentifierRow(Base):
    """Alias from a MAC address or serial number to a device id."""

    __tablename__ = "device_identifiers"

    # Surrogate key for the mapper; lookups only ever select device_id.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String, ForeignKey("device_config.device_id"), nullable=False)
    mac_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


def split_list_field(value: Optional[str]) -> Tuple[str, ...]:
    """Parse a comma-separated column into an ordered tuple, dropping empty segments."""

    if not value:
        return ()
    return tuple(part for part in value.split(",") if part)


def _record_from_row(row: DeviceConfigRow) -> DeviceIdentityRecord:
    return DeviceIdentityRecord(
        device_id=row.device_id or "",
        thing_name=row.thing_name or "",
        iot_data_endpoint=row.iot_endpoint or "",
        aws_region=row.aws_region or "",
        root_ca_material=row.root_ca_path or "",
        certificate_pem=row.certificate_pem or "",
        private_key_pem=row.private_key_pem or "",
        role_alias=row.role_alias or "",
        role_alias_endpoint=row.role_alias_endpoint or "",
        agent_version=row.nucleus_version or None,
        deployment_group=row.deployment_group or None,
        initial_components=split_list_field(row.initial_components),
        proxy_url=row.proxy_url,
        mqtt_port=row.mqtt_port,
        custom_domain=row.custom_domain,
    )


def database_url(database: str) -> str:
    if "://" in database:
        return database
    return f"sqlite:///{Path(database).resolve()}"


class DeviceIdentityStore:
    """Read-only access to device enrollment records.

    ``database`` is either a SQLite file path or a SQLAlchemy URL. Every
    lookup requires a prior ``connect()``; not-found returns None, while
    connection and query problems raise IdentityStoreError.
    """

    def __init__(self, database: str) -> None:
        self.database = database
        self._engine: Optional[Engine] = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def connect(self) -> None:
        if self._engine is not None:
            logger.warning("Identity store already connected")
            return

        if "://" not in self.database and not Path(self.database).is_file():
            raise IdentityStoreError(f"Cannot open database: {self.database} does not exist")

        url = database_url(self.database)
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        engine = create_engine(url, future=True, connect_args=connect_args)
        try:
            with engine.connect():
                pass
        except SQLAlchemyError as e:
            engine.dispose()
            raise IdentityStoreError(f"Cannot open database {self.database}: {e}") from e

        self._engine = engine
        logger.info("Connected to identity store: %s", self.database)

    def disconnect(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.debug("Disconnected from identity store")

    def __enter__(self) -> "DeviceIdentityStore":
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.disconnect()

    def _session(self) -> Session:
        if self._engine is None:
            raise IdentityStoreError("Identity store not connected")
        return Session(self._engine)

    def lookup_by_id(self, device_id: str) -> Optional[DeviceIdentityRecord]:
        with self._session() as db:
            try:
                row = db.get(DeviceConfigRow, device_id)
            except SQLAlchemyError as e:
                raise IdentityStoreError(f"Error reading device {device_id}: {e}") from e
            if row is None:
                logger.warning("No device configuration found for device_id: %s", device_id)
                return None
            logger.info("Found device configuration for device_id: %s", device_id)
            return _record_from_row(row)

    def resolve_identifier(self, identifier: str) -> Optional[str]:
        """Map a MAC address or serial number to a device id (MAC checked first)."""

        with self._session() as db:
            try:
                for column in (DeviceIdentifierRow.mac_address, DeviceIdentifierRow.serial_number):
                    device_id = db.execute(
                        select(DeviceIdentifierRow.device_id).where(column == identifier).limit(1)
                    ).scalar_one_or_none()
                    if device_id:
                        logger.debug("Found device_id %s for identifier %s", device_id, identifier)
                        return device_id
            except SQLAlchemyError as e:
                raise IdentityStoreError(f"Failed identifier lookup for {identifier}: {e}") from e
        return None

    def lookup_by_identifier(self, identifier: str) -> Optional[DeviceIdentityRecord]:
        device_id = self.resolve_identifier(identifier)
        if not device_id:
            logger.warning("No device found for identifier: %s", identifier)
            return None
        return self.lookup_by_id(device_id)

    def list_ids(self) -> List[str]:
        with self._session() as db:
            try:
                ids = db.execute(select(DeviceConfigRow.device_id).order_by(DeviceConfigRow.device_id)).scalars().all()
            except SQLAlchemyError as e:
                raise IdentityStoreError(f"Error listing devices: {e}") from e
        logger.debug("Found %d devices in identity store", len(ids))
        return list(ids)
