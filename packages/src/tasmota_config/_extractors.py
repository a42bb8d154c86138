"""Decoding of Tasmota query replies into setting values.

Querying a setting (publishing an empty payload to
``cmnd/{device}/{Setting}``) makes the firmware answer on
``stat/{device}/RESULT`` with a small JSON object.  The object's shape
depends on the setting, so each known setting is paired with an
:class:`Extractor` describing how to read it:

``GENERIC_FIELD``
    ``{"Timezone": "+01:00"}`` → the field's JSON scalar as-is.
``NUMERIC_FIELD``
    ``{"TelePeriod": 300}`` → the number truncated to ``int``.
``MODULE_SELECTION``
    ``{"Module": {"4": "Generic"}}`` → the single key as ``int``.
``PULSE_TIME_SLOT``
    ``{"PulseTime1": {"Set": 15, "Remaining": 0}}`` → ``Set`` as ``int``.

Settings without a registry entry fall back to ``RAW_TEXT``: the
payload string itself, compared verbatim against the desired value.

The registry is built once at import time and exposed read-only.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from tasmota_config._values import SettingValue
from tasmota_config.exceptions import (
    FieldNotFoundError,
    MalformedPayloadError,
    TypeMismatchError,
    UnexpectedShapeError,
)

# ---------------------------------------------------------------------------
# Extractor variants
# ---------------------------------------------------------------------------


class ExtractorKind(StrEnum):
    """How a reply payload is decoded."""

    RAW_TEXT = "raw_text"
    GENERIC_FIELD = "generic_field"
    NUMERIC_FIELD = "numeric_field"
    MODULE_SELECTION = "module_selection"
    PULSE_TIME_SLOT = "pulse_time_slot"


@dataclass(frozen=True, slots=True)
class Extractor:
    """Decoding recipe for one setting.

    ``field`` names the JSON key for the field-based kinds; ``slot``
    is the 1-based ``PulseTime<N>`` index for ``PULSE_TIME_SLOT``.
    """

    kind: ExtractorKind
    field: str = ""
    slot: int = 0

    @classmethod
    def generic(cls, field: str) -> Extractor:
        return cls(ExtractorKind.GENERIC_FIELD, field=field)

    @classmethod
    def numeric(cls, field: str) -> Extractor:
        return cls(ExtractorKind.NUMERIC_FIELD, field=field)

    @classmethod
    def module(cls) -> Extractor:
        return cls(ExtractorKind.MODULE_SELECTION, field="Module")

    @classmethod
    def pulse_time(cls, slot: int) -> Extractor:
        return cls(ExtractorKind.PULSE_TIME_SLOT, field=f"PulseTime{slot}", slot=slot)


RAW_TEXT = Extractor(ExtractorKind.RAW_TEXT)

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_GENERIC_FIELDS = ("DeviceName", "OtaUrl", "Timezone", "Topic")
_NUMERIC_FIELDS = (
    "CurrentCal",
    "LedState",
    "PowerCal",
    "PowerOnState",
    "TelePeriod",
    "VoltageCal",
    *(f"SwitchMode{n}" for n in range(1, 9)),
)
_PULSE_TIME_SLOTS = range(1, 9)


def _build_registry() -> Mapping[str, Extractor]:
    entries: dict[str, Extractor] = {}
    for field in _GENERIC_FIELDS:
        entries[field.lower()] = Extractor.generic(field)
    for field in _NUMERIC_FIELDS:
        entries[field.lower()] = Extractor.numeric(field)
    entries["module"] = Extractor.module()
    for slot in _PULSE_TIME_SLOTS:
        entries[f"pulsetime{slot}"] = Extractor.pulse_time(slot)
    return MappingProxyType(entries)


EXTRACTORS: Mapping[str, Extractor] = _build_registry()
"""Lowercase setting name → extractor.  Read-only."""


def lookup(setting: str) -> Extractor:
    """Return the extractor for *setting* (case-insensitive).

    Unknown settings get :data:`RAW_TEXT`.
    """
    return EXTRACTORS.get(setting.lower(), RAW_TEXT)


def extract(setting: str, payload: str) -> SettingValue:
    """Decode *payload* as the reply to a query for *setting*.

    Raises:
        ExtractorError: A subclass describing why the payload does
            not hold a usable value.
    """
    return decode(lookup(setting), payload, setting=setting)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode(
    extractor: Extractor,
    payload: str,
    *,
    setting: str | None = None,
) -> SettingValue:
    """Apply *extractor* to *payload*."""
    match extractor.kind:
        case ExtractorKind.GENERIC_FIELD:
            data = _load_object(payload, setting)
            value = _field(data, extractor.field, setting)
            return _scalar(value, extractor.field, setting)
        case ExtractorKind.NUMERIC_FIELD:
            data = _load_object(payload, setting)
            value = _field(data, extractor.field, setting)
            return SettingValue.of(_truncate(value, extractor.field, setting))
        case ExtractorKind.MODULE_SELECTION:
            return SettingValue.of(_selected_module(payload, extractor.field, setting))
        case ExtractorKind.PULSE_TIME_SLOT:
            return SettingValue.of(_pulse_time_set(payload, extractor.field, setting))
        case _:
            return SettingValue.of(payload)


def _load_object(payload: str, setting: str | None) -> dict[str, Any]:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        msg = f"Reply is not valid JSON: {exc}"
        raise MalformedPayloadError(msg, setting=setting) from exc
    if not isinstance(data, dict):
        msg = f"Reply is not a JSON object: {payload!r}"
        raise MalformedPayloadError(msg, setting=setting)
    return data


def _field(data: dict[str, Any], field: str, setting: str | None) -> Any:
    if field not in data:
        msg = f"Field {field!r} not found in reply"
        raise FieldNotFoundError(msg, setting=setting)
    return data[field]


def _scalar(value: Any, field: str, setting: str | None) -> SettingValue:
    try:
        return SettingValue.of(value)
    except TypeError as exc:
        msg = f"Expected a scalar in {field}, got {type(value).__name__}"
        raise TypeMismatchError(msg, setting=setting) from exc


def _truncate(value: Any, field: str, setting: str | None) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"Expected a number in {field}, got {type(value).__name__}"
        raise TypeMismatchError(msg, setting=setting)
    if not math.isfinite(value):
        msg = f"Expected a finite number in {field}, got {value!r}"
        raise TypeMismatchError(msg, setting=setting)
    return int(value)


def _selected_module(payload: str, field: str, setting: str | None) -> int:
    data = _load_object(payload, setting)
    modules = data.get(field)
    if not isinstance(modules, dict) or len(modules) != 1:
        count = len(modules) if isinstance(modules, dict) else 0
        msg = f"Expected exactly one module definition, found {count}"
        raise UnexpectedShapeError(msg, setting=setting)
    (key,) = modules
    try:
        return int(key)
    except ValueError as exc:
        msg = f"Module identifier {key!r} is not numeric"
        raise TypeMismatchError(msg, setting=setting) from exc


def _pulse_time_set(payload: str, field: str, setting: str | None) -> int:
    data = _load_object(payload, setting)
    if field not in data:
        msg = f"Found no response to {field}"
        raise FieldNotFoundError(msg, setting=setting)
    slot = data[field]
    if not isinstance(slot, dict):
        msg = f"Expected an object in {field}, got {type(slot).__name__}"
        raise TypeMismatchError(msg, setting=setting)
    return _truncate(_field(slot, "Set", setting), f"{field}.Set", setting)
