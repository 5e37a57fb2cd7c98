"""Model package for the USB hub.

Domain records shared by every component, the SQLAlchemy tables that persist
them and the pydantic schemas for the inbound report shapes.
"""
from .records import ANONYMOUS_NAME, UNKNOWN_ADDRESS, ConnectedClient, UsbEvent
from .db_models import Base, ConnectedClientRow, UsbEventRow
from .wire import ClientUsbDeviceInfo, DeviceListMessage, UsbDeviceInfo

__all__ = [
    "ANONYMOUS_NAME",
    "UNKNOWN_ADDRESS",
    "ConnectedClient",
    "UsbEvent",
    "Base",
    "ConnectedClientRow",
    "UsbEventRow",
    "ClientUsbDeviceInfo",
    "DeviceListMessage",
    "UsbDeviceInfo",
]
