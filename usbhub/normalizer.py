"""Turn inbound device reports into canonical :class:`UsbEvent` batches.

Two report shapes are accepted, one per hub method:

* ``ReportUsbDevices`` passes a list of descriptors that already use the
  canonical field names (:func:`normalize_device_list`).
* ``SendDeviceList`` passes a single JSON string wrapping an envelope of
  older-style descriptors (:func:`normalize_device_list_json`).

Neither function raises for bad input. A malformed report comes back as a
:class:`NormalizedReport` with no events and ``error`` set, an empty one with
no events and no error. Callers must not touch the event store when
``events`` is empty.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from usbhub.models.records import UsbEvent, ensure_utc, utc_now
from usbhub.models.wire import DEVICE_LIST_ADAPTER, ClientUsbDeviceInfo, DeviceListMessage, UsbDeviceInfo

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(slots=True)
class NormalizedReport:
    """Outcome of normalizing one report."""

    detected_at: datetime
    events: List[UsbEvent] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not self.events

    @property
    def dropped(self) -> bool:
        return self.error is not None


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _summarize(exc: ValidationError) -> str:
    parts = []
    for item in exc.errors()[:3]:
        location = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
        parts.append(f"{location}: {item.get('msg')}")
    if exc.error_count() > 3:
        parts.append(f"... {exc.error_count() - 3} more")
    return "; ".join(parts)


def _timestamp(clock: Optional[Clock]) -> datetime:
    return ensure_utc((clock or utc_now)())


def _from_device_info(connection_id: str, device: UsbDeviceInfo, detected_at: datetime) -> UsbEvent:
    return UsbEvent(
        connection_id=connection_id,
        device_index=device.device_index,
        vendor_id=device.vendor_id,
        product_id=device.product_id,
        serial_number=_clean(device.serial_number),
        product_string=_clean(device.product_string),
        manufacturer_string=_clean(device.manufacturer_string),
        is_blocked=device.is_blocked,
        detected_at=detected_at,
    )


def _from_client_info(connection_id: str, device: ClientUsbDeviceInfo, detected_at: datetime) -> UsbEvent:
    # The enveloped shape has no serial number field.
    return UsbEvent(
        connection_id=connection_id,
        device_index=device.device_index,
        vendor_id=device.vendor_id,
        product_id=device.product_id,
        serial_number="",
        product_string=_clean(device.friendly_name),
        manufacturer_string=_clean(device.hardware_id),
        is_blocked=not device.is_whitelisted,
        detected_at=detected_at,
    )


def normalize_device_list(
    connection_id: str,
    devices: Any,
    *,
    clock: Optional[Clock] = None,
) -> NormalizedReport:
    """Normalize a ``ReportUsbDevices`` payload.

    Strings are trimmed, missing strings become ``""`` and ``None`` entries
    are skipped. A payload that does not validate is dropped as a whole.
    """
    detected_at = _timestamp(clock)
    try:
        parsed = DEVICE_LIST_ADAPTER.validate_python(devices)
    except ValidationError as exc:
        return NormalizedReport(detected_at, error=f"invalid device list: {_summarize(exc)}")

    events = [
        _from_device_info(connection_id, device, detected_at)
        for device in (parsed or ())
        if device is not None
    ]
    return NormalizedReport(detected_at, events)


def normalize_device_list_json(
    connection_id: str,
    payload: Any,
    *,
    clock: Optional[Clock] = None,
) -> NormalizedReport:
    """Normalize a ``SendDeviceList`` JSON string.

    ``friendlyName`` becomes the product string, ``hardwareId`` the
    manufacturer string and ``isBlocked`` is the negation of
    ``isWhitelisted``. Keys match regardless of case.
    """
    detected_at = _timestamp(clock)
    if not isinstance(payload, str):
        return NormalizedReport(
            detected_at,
            error=f"device list payload must be a JSON string, got {type(payload).__name__}",
        )
    if not payload.strip():
        return NormalizedReport(detected_at)

    try:
        raw = json.loads(payload)
    except (json.JSONDecodeError, RecursionError) as exc:
        return NormalizedReport(detected_at, error=f"invalid device list JSON: {exc}")

    try:
        message = DeviceListMessage.model_validate(raw)
    except ValidationError as exc:
        return NormalizedReport(detected_at, error=f"invalid device list envelope: {_summarize(exc)}")

    events = [
        _from_client_info(connection_id, device, detected_at)
        for device in (message.data or ())
        if device is not None
    ]
    return NormalizedReport(detected_at, events)


class EventNormalizer:
    """Stateless wrapper binding a clock to the two normalization functions."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock

    def from_device_list(self, connection_id: str, devices: Any) -> NormalizedReport:
        return normalize_device_list(connection_id, devices, clock=self._clock)

    def from_device_list_json(self, connection_id: str, payload: Any) -> NormalizedReport:
        return normalize_device_list_json(connection_id, payload, clock=self._clock)


__all__ = [
    "EventNormalizer",
    "NormalizedReport",
    "normalize_device_list",
    "normalize_device_list_json",
]
