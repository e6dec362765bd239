from __future__ import annotations

import logging
import socket
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

SYS_NET = Path("/sys/class/net")
_SERIAL_SOURCES = (
    Path("/sys/firmware/devicetree/base/serial-number"),
    Path("/proc/device-tree/serial-number"),
    Path("/sys/class/dmi/id/product_serial"),
)
_NULL_MAC = "00:00:00:00:00:00"


def _read_text(path: Path) -> Optional[str]:
    try:
        txt = path.read_text(encoding="utf-8", errors="ignore").strip().strip("\x00")
        return txt or None
    except OSError:
        return None


def primary_mac_address(sys_net: Path = SYS_NET) -> Optional[str]:
    """MAC of eth0 if present, else of the first non-loopback interface."""

    if not sys_net.exists():
        return None
    names = sorted(p.name for p in sys_net.iterdir() if p.name != "lo")
    if "eth0" in names:
        names.remove("eth0")
        names.insert(0, "eth0")
    for name in names:
        mac = _read_text(sys_net / name / "address")
        if mac and mac != _NULL_MAC:
            return mac.lower()
    return None


def board_serial_number() -> Optional[str]:
    for src in _SERIAL_SOURCES:
        serial = _read_text(src)
        if serial:
            return serial
    return None


def candidate_identifiers() -> List[str]:
    """Physical identifiers to try against the alias index, most specific first."""

    candidates: List[str] = []
    for value in (primary_mac_address(), board_serial_number(), socket.gethostname()):
        if value and value not in candidates:
            candidates.append(value)
    logger.debug("Device identifier candidates: %s", candidates)
    return candidates
