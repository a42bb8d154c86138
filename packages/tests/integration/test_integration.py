"""Integration tests — full reconciliation runs.

Validates the complete flow: YAML document on disk → settings →
App.run() → per-device subscribe/query/compare → BackLog batches →
run report, with MockMqttClient standing in for the broker and
scripted replies standing in for the devices.

Test Techniques Used:
    - Integration Testing: end-to-end runs via App.run().
    - State-based Testing: verify published messages and report contents.
    - Scenario Testing: mixed fleet of matching, drifting and silent devices.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest

from tasmota_config import App, DeviceOutcome, Settings
from tasmota_config.testing import MockMqttClient, make_settings

pytestmark = [
    pytest.mark.integration,
    pytest.mark.usefixtures("restore_root_logger"),
]

CONFIG = """\
command_prefix: cmnd
stat_prefix: stat

settings:
  Module: 18
  PowerOnState: 3
  TelePeriod: 300
  Timezone: "99"

devices:
  kitchen_plug:
    topic: kitchen/plug
    settings:
      TelePeriod: 60
      PulseTime1: 15
  garage:
    topic: garage
  porch:
    topic: porch
"""

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def fleet() -> MockMqttClient:
    """Broker double with scripted device replies.

    - kitchen_plug reports the global TelePeriod instead of its own
      override and a different pulse time.
    - garage matches everything.
    - porch answers Module but never PowerOnState.
    """
    mock = MockMqttClient()

    def script(topic: str, setting: str, payload: str) -> None:
        mock.reply_to(f"cmnd/{topic}/{setting}", f"stat/{topic}/RESULT", payload)

    script("kitchen/plug", "Module", '{"Module":{"18":"Generic"}}')
    script("kitchen/plug", "PowerOnState", '{"PowerOnState":3}')
    script("kitchen/plug", "TelePeriod", '{"TelePeriod":300}')
    script("kitchen/plug", "Timezone", '{"Timezone":"99"}')
    script("kitchen/plug", "PulseTime1", '{"PulseTime1":{"Set":0,"Remaining":0}}')

    script("garage", "Module", '{"Module":{"18":"Generic"}}')
    script("garage", "PowerOnState", '{"PowerOnState":3}')
    script("garage", "TelePeriod", '{"TelePeriod":300.0}')
    script("garage", "Timezone", '{"Timezone":"99"}')

    script("porch", "Module", '{"Module":{"18":"Generic"}}')
    return mock


def _settings(config_path: Path, **overrides: object) -> Settings:
    return make_settings(
        config_file=str(config_path),
        mqtt={"command_timeout": 0.05},
        **overrides,
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestFleetRun:
    """One run over a mixed fleet."""

    def test_outcomes(self, config_path: Path, fleet: MockMqttClient) -> None:
        report = App().run(
            mqtt=fleet,
            settings=_settings(config_path),
            shutdown_event=asyncio.Event(),
        )

        assert [(r.device, r.outcome) for r in report.devices] == [
            ("kitchen_plug", DeviceOutcome.APPLIED),
            ("garage", DeviceOutcome.IN_SYNC),
            ("porch", DeviceOutcome.FAILED),
        ]

    def test_only_drifting_device_receives_backlog(
        self,
        config_path: Path,
        fleet: MockMqttClient,
    ) -> None:
        App().run(
            mqtt=fleet,
            settings=_settings(config_path),
            shutdown_event=asyncio.Event(),
        )

        backlogs = [(t, p) for t, p, *_ in fleet.published if t.endswith("/BackLog")]
        assert backlogs == [
            ("cmnd/kitchen/plug/BackLog", "TelePeriod 60; PulseTime1 15"),
        ]

    def test_queries_in_document_order(
        self,
        config_path: Path,
        fleet: MockMqttClient,
    ) -> None:
        App().run(
            mqtt=fleet,
            settings=_settings(config_path),
            shutdown_event=asyncio.Event(),
        )

        kitchen = [
            t.rsplit("/", 1)[1]
            for t, *_ in fleet.published
            if t.startswith("cmnd/kitchen/plug/")
        ]
        assert kitchen == [
            "Module",
            "PowerOnState",
            "TelePeriod",
            "Timezone",
            "PulseTime1",
            "BackLog",
        ]

    def test_silent_device_reports_timeout(
        self,
        config_path: Path,
        fleet: MockMqttClient,
    ) -> None:
        report = App().run(
            mqtt=fleet,
            settings=_settings(config_path),
            shutdown_event=asyncio.Event(),
        )

        porch = report.devices[2]
        assert porch.checked == ("Module",)
        assert porch.failure is not None
        assert porch.failure.error_type == "timeout"
        assert porch.failure.setting == "PowerOnState"

    def test_every_subscription_released(
        self,
        config_path: Path,
        fleet: MockMqttClient,
    ) -> None:
        App().run(
            mqtt=fleet,
            settings=_settings(config_path),
            shutdown_event=asyncio.Event(),
        )

        assert fleet.subscriptions == [
            "stat/kitchen/plug/RESULT",
            "stat/garage/RESULT",
            "stat/porch/RESULT",
        ]
        assert fleet.unsubscriptions == fleet.subscriptions
        assert fleet.active_subscriptions == []


class TestDryRunFleet:
    """Dry-run queries every device but changes none."""

    def test_no_backlog(self, config_path: Path, fleet: MockMqttClient) -> None:
        report = App().run(
            mqtt=fleet,
            settings=_settings(config_path, dry_run=True),
            shutdown_event=asyncio.Event(),
        )

        assert report.devices[0].outcome is DeviceOutcome.SUPPRESSED
        assert not any(t.endswith("/BackLog") for t, *_ in fleet.published)
        assert report.devices[0].summary == (
            "changes needed but suppressed (dry-run): TelePeriod 60; PulseTime1 15"
        )


class TestSingleDevice:
    """A device filter limits the run to one device."""

    def test_filter(self, config_path: Path, fleet: MockMqttClient) -> None:
        report = App().run(
            mqtt=fleet,
            settings=_settings(config_path, device="garage"),
            shutdown_event=asyncio.Event(),
        )

        assert [r.device for r in report.devices] == ["garage"]
        assert all(t.startswith("cmnd/garage/") for t, *_ in fleet.published)


class TestJsonLogging:
    """JSON logs carry the reconciliation context."""

    def test_mismatch_lines(
        self,
        config_path: Path,
        fleet: MockMqttClient,
        tmp_path: Path,
    ) -> None:
        log_file = tmp_path / "run.log"

        App().run(
            mqtt=fleet,
            settings=_settings(
                config_path,
                logging={"format": "json", "file": str(log_file)},
            ),
            shutdown_event=asyncio.Event(),
        )
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        mismatches = [line for line in lines if "needs adjustment" in line["message"]]
        assert [(m["device"], m["setting"]) for m in mismatches] == [
            ("kitchen_plug", "TelePeriod"),
            ("kitchen_plug", "PulseTime1"),
        ]
        assert mismatches[0]["expected"] == "60 (int)"
        assert mismatches[0]["actual"] == "300 (int)"
        assert all(line["service"] == "tasmota-config" for line in lines)
