"""Reconciliation reports.

Every device pass ends in a :class:`DeviceReport` with one of four
outcomes:

- ``in_sync`` — every setting already matched, nothing was sent.
- ``applied`` — mismatches were found and sent as one BackLog batch.
- ``suppressed`` — mismatches were found but dry-run kept them back.
- ``failed`` — the pass was aborted; ``failure`` says why.

A run collects the device reports in processing order in a
:class:`RunReport`.  Both serialise to JSON-friendly dicts.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from tasmota_config._errors import ErrorPayload
from tasmota_config._values import SettingValue


class DeviceOutcome(StrEnum):
    """Terminal outcome of one device pass."""

    IN_SYNC = "in_sync"
    APPLIED = "applied"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Mismatch:
    """A setting whose reported value differs from the desired one."""

    setting: str
    desired: SettingValue
    actual: SettingValue

    def command(self) -> str:
        """BackLog entry that sets the desired value."""
        return f"{self.setting} {self.desired.display()}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "setting": self.setting,
            "expected": self.desired.value,
            "actual": self.actual.value,
        }


@dataclass(frozen=True, slots=True)
class DeviceReport:
    """Result of reconciling one device."""

    device: str
    outcome: DeviceOutcome
    checked: tuple[str, ...] = ()
    mismatches: tuple[Mismatch, ...] = ()
    failure: ErrorPayload | None = None

    @property
    def failed(self) -> bool:
        return self.outcome is DeviceOutcome.FAILED

    @property
    def summary(self) -> str:
        """One-line human-readable result."""
        match self.outcome:
            case DeviceOutcome.IN_SYNC:
                return "no changes needed"
            case DeviceOutcome.APPLIED:
                return f"applied {len(self.mismatches)} change(s)"
            case DeviceOutcome.SUPPRESSED:
                changes = "; ".join(m.command() for m in self.mismatches)
                return f"changes needed but suppressed (dry-run): {changes}"
            case _:
                reason = self.failure.message if self.failure else "unknown error"
                return f"processing aborted: {reason}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "device": self.device,
            "outcome": str(self.outcome),
            "checked": list(self.checked),
            "mismatches": [m.to_dict() for m in self.mismatches],
            "failure": None if self.failure is None else {
                "error_type": self.failure.error_type,
                "message": self.failure.message,
                "setting": self.failure.setting,
            },
            "summary": self.summary,
        }


@dataclass
class RunReport:
    """Device reports of one run, in processing order."""

    devices: list[DeviceReport] = field(default_factory=list)
    interrupted: bool = False

    def add(self, report: DeviceReport) -> None:
        self.devices.append(report)

    @property
    def failed(self) -> list[DeviceReport]:
        """Reports of devices whose pass was aborted."""
        return [r for r in self.devices if r.failed]

    def count(self, outcome: DeviceOutcome) -> int:
        return sum(1 for r in self.devices if r.outcome is outcome)

    def to_dict(self) -> dict[str, Any]:
        return {
            "devices": [r.to_dict() for r in self.devices],
            "interrupted": self.interrupted,
            "totals": {str(o): self.count(o) for o in DeviceOutcome},
        }

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(self.to_dict())
