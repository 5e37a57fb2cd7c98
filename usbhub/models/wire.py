"""Pydantic schemas for the two device-report wire shapes.

``ReportUsbDevices`` sends a list of :class:`UsbDeviceInfo` whose fields
already line up with the stored event. ``SendDeviceList`` sends one JSON
string holding a :class:`DeviceListMessage` envelope whose entries use the
older ``hardwareId`` / ``friendlyName`` / ``isWhitelisted`` names. Keys are
matched case-insensitively in both shapes.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from usbhub.models.db_models import UINT16_MAX, UINT32_MAX


def fold_keys(value: Any, model: type[BaseModel]) -> Any:
    """Rewrite mapping keys to the model's aliases, ignoring case."""
    if not isinstance(value, Mapping):
        return value
    lookup = {}
    for name, field in model.model_fields.items():
        alias = field.alias or name
        lookup[name.lower()] = alias
        lookup[alias.lower()] = alias
    folded = {}
    for key, item in value.items():
        target = lookup.get(str(key).lower())
        if target is not None:
            folded[target] = item
    return folded


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _case_insensitive(cls, value: Any) -> Any:
        return fold_keys(value, cls)


class UsbDeviceInfo(_WireModel):
    """Shape A descriptor (``ReportUsbDevices``)."""

    device_index: int = Field(default=0, ge=0, le=UINT32_MAX)
    vendor_id: int = Field(default=0, ge=0, le=UINT16_MAX)
    product_id: int = Field(default=0, ge=0, le=UINT16_MAX)
    serial_number: Optional[str] = None
    product_string: Optional[str] = None
    manufacturer_string: Optional[str] = None
    is_blocked: bool = False


class ClientUsbDeviceInfo(_WireModel):
    """Shape B descriptor, one entry of :class:`DeviceListMessage.data`."""

    device_index: int = Field(default=0, ge=0, le=UINT32_MAX)
    vendor_id: int = Field(default=0, ge=0, le=UINT16_MAX)
    product_id: int = Field(default=0, ge=0, le=UINT16_MAX)
    hardware_id: Optional[str] = None
    friendly_name: Optional[str] = None
    is_whitelisted: bool = False


class DeviceListMessage(_WireModel):
    """Shape B envelope (``SendDeviceList``). ``type`` is carried but unused."""

    type: Any = None
    data: Optional[List[Optional[ClientUsbDeviceInfo]]] = None


DEVICE_LIST_ADAPTER = TypeAdapter(Optional[List[Optional[UsbDeviceInfo]]])


__all__ = [
    "ClientUsbDeviceInfo",
    "DEVICE_LIST_ADAPTER",
    "DeviceListMessage",
    "UsbDeviceInfo",
    "fold_keys",
]
