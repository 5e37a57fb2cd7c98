"""SQLAlchemy table models for the client registry and the USB event log.

Both tables live in the same database; ``usb_events.connection_id`` is kept
as plain text on purpose, the originating client row may already be gone.
"""
from __future__ import annotations

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import declarative_base

from usbhub.models.records import ConnectedClient, UsbEvent

UINT16_MAX = 0xFFFF
UINT32_MAX = 0xFFFFFFFF

Base = declarative_base()


class ConnectedClientRow(Base):  # type: ignore[misc, valid-type]
    """Database model for one connected client."""
    __tablename__ = "connected_clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    connection_id = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    remote_address = Column(String(255), nullable=False)
    connected_at = Column(DateTime(timezone=True), nullable=False, index=True)

    @classmethod
    def from_record(cls, client: ConnectedClient) -> "ConnectedClientRow":
        return cls(
            connection_id=client.connection_id,
            name=client.name,
            remote_address=client.remote_address,
            connected_at=client.connected_at,
        )

    def to_record(self) -> ConnectedClient:
        return ConnectedClient(
            id=self.id,
            connection_id=self.connection_id,
            name=self.name,
            remote_address=self.remote_address,
            connected_at=self.connected_at,
        )

    def __repr__(self) -> str:
        return f"<ConnectedClientRow {self.name} ({self.connection_id})>"


class UsbEventRow(Base):  # type: ignore[misc, valid-type]
    """Database model for one reported USB device observation."""
    __tablename__ = "usb_events"
    __table_args__ = (
        CheckConstraint(f"device_index BETWEEN 0 AND {UINT32_MAX}", name="ck_usb_events_device_index"),
        CheckConstraint(f"vendor_id BETWEEN 0 AND {UINT16_MAX}", name="ck_usb_events_vendor_id"),
        CheckConstraint(f"product_id BETWEEN 0 AND {UINT16_MAX}", name="ck_usb_events_product_id"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    connection_id = Column(String(255), nullable=False)
    device_index = Column(Integer, nullable=False)
    vendor_id = Column(Integer, nullable=False)
    product_id = Column(Integer, nullable=False)
    serial_number = Column(String, nullable=False, default="")
    product_string = Column(String, nullable=False, default="")
    manufacturer_string = Column(String, nullable=False, default="")
    is_blocked = Column(Boolean, nullable=False, default=False)
    detected_at = Column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_record(cls, event: UsbEvent) -> "UsbEventRow":
        return cls(
            connection_id=event.connection_id or "",
            device_index=event.device_index,
            vendor_id=event.vendor_id,
            product_id=event.product_id,
            serial_number=event.serial_number or "",
            product_string=event.product_string or "",
            manufacturer_string=event.manufacturer_string or "",
            is_blocked=bool(event.is_blocked),
            detected_at=event.detected_at,
        )

    def to_record(self) -> UsbEvent:
        return UsbEvent(
            id=self.id,
            connection_id=self.connection_id,
            device_index=self.device_index,
            vendor_id=self.vendor_id,
            product_id=self.product_id,
            serial_number=self.serial_number,
            product_string=self.product_string,
            manufacturer_string=self.manufacturer_string,
            is_blocked=bool(self.is_blocked),
            detected_at=self.detected_at,
        )

    def __repr__(self) -> str:
        return f"<UsbEventRow {self.vendor_id:04x}:{self.product_id:04x} from {self.connection_id}>"


__all__ = ["Base", "ConnectedClientRow", "UsbEventRow", "UINT16_MAX", "UINT32_MAX"]
