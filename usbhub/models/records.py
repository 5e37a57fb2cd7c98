"""Plain value records passed between the hub, the normalizer and the stores."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

ANONYMOUS_NAME = "anonymous"
UNKNOWN_ADDRESS = "unknown"


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ConnectedClient:
    """Identity of one live hub connection."""

    connection_id: str
    name: str = ANONYMOUS_NAME
    remote_address: str = UNKNOWN_ADDRESS
    connected_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.connected_at is None:
            self.connected_at = utc_now()
        else:
            self.connected_at = ensure_utc(self.connected_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "connectionId": self.connection_id,
            "name": self.name,
            "remoteAddress": self.remote_address,
            "connectedAt": self.connected_at.isoformat(),
        }


@dataclass(slots=True)
class UsbEvent:
    """One canonical USB device observation.

    Instances built by the normalizer are detached (``id`` is ``None``); the
    event store returns copies with the assigned ``id`` filled in.
    """

    connection_id: str
    device_index: int
    vendor_id: int
    product_id: int
    detected_at: datetime
    serial_number: str = ""
    product_string: str = ""
    manufacturer_string: str = ""
    is_blocked: bool = False
    id: Optional[int] = None

    def __post_init__(self) -> None:
        self.detected_at = ensure_utc(self.detected_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "connectionId": self.connection_id,
            "deviceIndex": self.device_index,
            "vendorId": self.vendor_id,
            "productId": self.product_id,
            "serialNumber": self.serial_number,
            "productString": self.product_string,
            "manufacturerString": self.manufacturer_string,
            "isBlocked": self.is_blocked,
            "detectedAt": self.detected_at.isoformat(),
        }


__all__ = [
    "ANONYMOUS_NAME",
    "UNKNOWN_ADDRESS",
    "ConnectedClient",
    "UsbEvent",
    "ensure_utc",
    "utc_now",
]
