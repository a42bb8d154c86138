"""Reconciliation of a single device.

One pass over a device walks this state machine::

    IDLE → SUBSCRIBED → QUERYING ⇄ COMPARING → APPLYING → DONE
                 └──────────┴──────────┴──────────┴──→ FAILED

1. Subscribe to ``{stat}/{device}/RESULT``.
2. For every effective setting, in order: publish an empty query to
   ``{cmnd}/{device}/{Setting}``, wait for the reply, compare it with
   the desired value and remember any mismatch.
3. Without mismatches nothing is sent.  With mismatches, dry-run only
   reports them; otherwise they are sent as a single
   ``{cmnd}/{device}/BackLog`` command (``"A 1; B 2"``).

Queries are never pipelined: replies carry no identifier, so the
correlator relies on exactly one query being in flight.  The first
failure ends the pass and the result subscription is always released,
whatever the exit path.

Every broker round-trip is bounded by ``ReconcileOptions.command_timeout``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum

from tasmota_config._config import DesiredConfig
from tasmota_config._correlator import DEFAULT_CAPACITY, Correlator, ResponseCorrelator
from tasmota_config._errors import build_error_payload
from tasmota_config._mqtt import MqttPort
from tasmota_config._report import DeviceOutcome, DeviceReport, Mismatch
from tasmota_config._settings import Settings
from tasmota_config._topics import DeviceTopics
from tasmota_config._values import SettingValue
from tasmota_config.exceptions import (
    ApplyError,
    ExtractionError,
    ExtractorError,
    QueryPublishError,
    ReconcileError,
    ResponseTimeoutError,
    SubscriptionError,
)

logger = logging.getLogger(__name__)

BATCH_SEPARATOR = "; "

CorrelatorFactory = Callable[[str, int], Correlator]
"""Builds the correlator for a device from (device name, buffer capacity)."""


class ReconcilerState(StrEnum):
    """States of a device pass."""

    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    QUERYING = "querying"
    COMPARING = "comparing"
    APPLYING = "applying"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ReconcileOptions:
    """Run-wide knobs threaded into every device pass."""

    command_timeout: float = 2.0
    qos: int = 1
    dry_run: bool = False
    response_buffer: int = DEFAULT_CAPACITY

    @classmethod
    def from_settings(cls, settings: Settings) -> ReconcileOptions:
        return cls(
            command_timeout=settings.mqtt.command_timeout,
            qos=settings.mqtt.qos,
            dry_run=settings.dry_run,
            response_buffer=settings.response_buffer,
        )


def batch_command(mismatches: Iterable[Mismatch]) -> str:
    """Join mismatches into one BackLog payload, e.g. ``"TelePeriod 300; LedState 1"``."""
    return BATCH_SEPARATOR.join(m.command() for m in mismatches)


def _default_correlator(device: str, capacity: int) -> Correlator:
    return ResponseCorrelator(device, capacity=capacity)


class DeviceReconciler:
    """Runs one reconciliation pass for one device.

    Args:
        mqtt: Connected MQTT port, shared read-only across devices.
        config: The desired-state document.
        device: Name of the device entry in *config*.
        options: Timeout, QoS, dry-run and buffer settings.
        correlator_factory: Builds the reply correlator; defaults to
            :class:`ResponseCorrelator`.
    """

    def __init__(
        self,
        mqtt: MqttPort,
        config: DesiredConfig,
        device: str,
        options: ReconcileOptions,
        *,
        correlator_factory: CorrelatorFactory = _default_correlator,
    ) -> None:
        self._mqtt = mqtt
        self._device = device
        self._options = options
        self._topics: DeviceTopics = config.topics_for(device)
        self._desired: dict[str, SettingValue] = config.effective_settings(device)
        self._correlator = correlator_factory(device, options.response_buffer)
        self._state = ReconcilerState.IDLE
        self._checked: list[str] = []
        self._mismatches: list[Mismatch] = []

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def topics(self) -> DeviceTopics:
        return self._topics

    async def run(self) -> DeviceReport:
        """Reconcile the device and report the outcome.

        Reconciler errors end the pass with a ``failed`` report; they
        are never raised.  Anything else (including cancellation)
        propagates after the subscription has been released.
        """
        logger.info(
            "Starting device config for %s",
            self._device,
            extra={"device": self._device},
        )

        try:
            await self._subscribe()
            await self._check_settings()
            outcome = await self._apply()
        except ReconcileError as exc:
            self._transition(ReconcilerState.FAILED)
            failure = build_error_payload(exc)
            logger.error(
                "Unable to process device %s: %s",
                self._device,
                failure.message,
                extra={"device": self._device, "setting": exc.setting},
            )
            return DeviceReport(
                device=self._device,
                outcome=DeviceOutcome.FAILED,
                checked=tuple(self._checked),
                mismatches=tuple(self._mismatches),
                failure=failure,
            )
        finally:
            await self._release()

        self._transition(ReconcilerState.DONE)
        return DeviceReport(
            device=self._device,
            outcome=outcome,
            checked=tuple(self._checked),
            mismatches=tuple(self._mismatches),
        )

    # -- Steps --------------------------------------------------------------

    async def _subscribe(self) -> None:
        topic = self._topics.result
        try:
            async with asyncio.timeout(self._options.command_timeout):
                await self._mqtt.subscribe(
                    topic,
                    self._correlator.on_message,
                    qos=self._options.qos,
                )
        except Exception as exc:
            msg = f"Unable to subscribe to {topic}"
            raise SubscriptionError(msg, device=self._device) from exc
        self._transition(ReconcilerState.SUBSCRIBED)

    async def _check_settings(self) -> None:
        for name, desired in self._desired.items():
            self._transition(ReconcilerState.QUERYING, name)
            actual = await self._query(name)
            self._checked.append(name)

            self._transition(ReconcilerState.COMPARING, name)
            context = {
                "device": self._device,
                "setting": name,
                "expected": desired.describe(),
                "actual": actual.describe(),
            }
            if actual == desired:
                logger.debug("%s: %s is fine", self._device, name, extra=context)
                continue

            logger.warning(
                "%s: %s needs adjustment (actual %s, expected %s)",
                self._device,
                name,
                actual.describe(),
                desired.describe(),
                extra=context,
            )
            self._mismatches.append(
                Mismatch(setting=name, desired=desired, actual=actual),
            )

    async def _query(self, name: str) -> SettingValue:
        topic = self._topics.setting(name)
        try:
            async with asyncio.timeout(self._options.command_timeout):
                await self._mqtt.publish(topic, "", qos=self._options.qos)
        except Exception as exc:
            msg = f"Unable to send request command to {topic}"
            raise QueryPublishError(msg, device=self._device, setting=name) from exc

        try:
            return await self._correlator.await_response(
                name,
                self._options.command_timeout,
            )
        except (ExtractorError, ResponseTimeoutError) as exc:
            msg = f"Unable to extract value of {name}"
            raise ExtractionError(msg, device=self._device, setting=name) from exc

    async def _apply(self) -> DeviceOutcome:
        extra = {"device": self._device}
        if not self._mismatches:
            logger.info("%s looks good, nothing to do", self._device, extra=extra)
            return DeviceOutcome.IN_SYNC

        if self._options.dry_run:
            logger.info(
                "%s needs %d update(s) but dry-run was requested",
                self._device,
                len(self._mismatches),
                extra=extra,
            )
            return DeviceOutcome.SUPPRESSED

        self._transition(ReconcilerState.APPLYING)
        topic = self._topics.backlog
        command = batch_command(self._mismatches)
        logger.info(
            "Requesting %d update(s) for %s",
            len(self._mismatches),
            self._device,
            extra=extra,
        )
        logger.debug("Sending BackLog to %s: %r", topic, command, extra=extra)
        try:
            async with asyncio.timeout(self._options.command_timeout):
                await self._mqtt.publish(topic, command, qos=self._options.qos)
        except Exception as exc:
            msg = f"Unable to send BackLog command to {topic}"
            raise ApplyError(msg, device=self._device) from exc
        return DeviceOutcome.APPLIED

    async def _release(self) -> None:
        """Close the correlator, then unsubscribe from the result topic.

        Unsubscribing is best effort.
        """
        self._correlator.close()
        topic = self._topics.result
        try:
            async with asyncio.timeout(self._options.command_timeout):
                await self._mqtt.unsubscribe(topic)
        except Exception:
            logger.warning("Unable to unsubscribe from %s", topic, exc_info=True)

    def _transition(self, state: ReconcilerState, setting: str | None = None) -> None:
        logger.debug(
            "%s: %s -> %s%s",
            self._device,
            self._state,
            state,
            f" ({setting})" if setting else "",
        )
        self._state = state


async def reconcile_device(
    mqtt: MqttPort,
    config: DesiredConfig,
    device: str,
    options: ReconcileOptions,
) -> DeviceReport:
    """Reconcile *device* with a fresh :class:`DeviceReconciler`."""
    return await DeviceReconciler(mqtt, config, device, options).run()
