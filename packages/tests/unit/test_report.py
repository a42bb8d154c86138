"""Tests for tasmota_config._report — device and run reports.

Test Techniques Used:
    - Equivalence Partitioning: one summary per outcome
    - Contract-based Testing: dict/JSON serialisation and totals
"""

from __future__ import annotations

import json

import pytest

from tasmota_config._errors import ErrorPayload
from tasmota_config._report import DeviceOutcome, DeviceReport, Mismatch, RunReport
from tasmota_config._values import SettingValue

FAILURE = ErrorPayload(
    error_type="timeout",
    message="Unable to extract value of LedState: No reply to LedState within 2s",
    device="plug",
    setting="LedState",
    timestamp="2026-02-14T12:00:00+00:00",
)


def _mismatch(setting: str, desired: object, actual: object) -> Mismatch:
    return Mismatch(setting, SettingValue.of(desired), SettingValue.of(actual))


class TestMismatch:
    def test_command(self) -> None:
        assert _mismatch("TelePeriod", 300, 60.0).command() == "TelePeriod 300"

    def test_command_with_bool(self) -> None:
        assert _mismatch("SetOption1", True, False).command() == "SetOption1 true"

    def test_to_dict_keeps_native_values(self) -> None:
        assert _mismatch("Timezone", "99", "+01:00").to_dict() == {
            "setting": "Timezone",
            "expected": "99",
            "actual": "+01:00",
        }


class TestDeviceReport:
    """summary renders one line per outcome."""

    @pytest.mark.parametrize(
        ("report", "expected"),
        [
            (
                DeviceReport("plug", DeviceOutcome.IN_SYNC),
                "no changes needed",
            ),
            (
                DeviceReport(
                    "plug",
                    DeviceOutcome.APPLIED,
                    mismatches=(_mismatch("TelePeriod", 300, 60),),
                ),
                "applied 1 change(s)",
            ),
            (
                DeviceReport(
                    "plug",
                    DeviceOutcome.SUPPRESSED,
                    mismatches=(
                        _mismatch("TelePeriod", 300, 60),
                        _mismatch("LedState", 1, 0),
                    ),
                ),
                "changes needed but suppressed (dry-run): TelePeriod 300; LedState 1",
            ),
            (
                DeviceReport("plug", DeviceOutcome.FAILED, failure=FAILURE),
                f"processing aborted: {FAILURE.message}",
            ),
            (
                DeviceReport("plug", DeviceOutcome.FAILED),
                "processing aborted: unknown error",
            ),
        ],
    )
    def test_summary(self, report: DeviceReport, expected: str) -> None:
        assert report.summary == expected

    def test_failed(self) -> None:
        assert DeviceReport("plug", DeviceOutcome.FAILED).failed
        assert not DeviceReport("plug", DeviceOutcome.APPLIED).failed

    def test_to_dict(self) -> None:
        report = DeviceReport(
            "plug",
            DeviceOutcome.FAILED,
            checked=("TelePeriod",),
            failure=FAILURE,
        )
        data = report.to_dict()
        assert data["outcome"] == "failed"
        assert data["checked"] == ["TelePeriod"]
        assert data["failure"] == {
            "error_type": "timeout",
            "message": FAILURE.message,
            "setting": "LedState",
        }


class TestRunReport:
    @pytest.fixture
    def run(self) -> RunReport:
        report = RunReport()
        report.add(DeviceReport("a", DeviceOutcome.IN_SYNC))
        report.add(DeviceReport("b", DeviceOutcome.FAILED, failure=FAILURE))
        report.add(DeviceReport("c", DeviceOutcome.IN_SYNC))
        return report

    def test_keeps_processing_order(self, run: RunReport) -> None:
        assert [r.device for r in run.devices] == ["a", "b", "c"]

    def test_failed(self, run: RunReport) -> None:
        assert [r.device for r in run.failed] == ["b"]

    def test_count(self, run: RunReport) -> None:
        assert run.count(DeviceOutcome.IN_SYNC) == 2
        assert run.count(DeviceOutcome.APPLIED) == 0

    def test_to_json(self, run: RunReport) -> None:
        data = json.loads(run.to_json())
        assert data["interrupted"] is False
        assert data["totals"] == {
            "in_sync": 2,
            "applied": 0,
            "suppressed": 0,
            "failed": 1,
        }
        assert data["devices"][1]["summary"].startswith("processing aborted")
