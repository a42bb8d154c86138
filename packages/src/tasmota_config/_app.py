"""Run orchestration for tasmota-config.

The :class:`App` class is the composition root: it resolves settings,
configures logging, loads the desired-state document, connects to the
broker and drives the reconciliation of every configured device.

Typical usage::

    from tasmota_config import App

    app = App(version="1.2.0")
    report = app.run()
    for device in report.devices:
        print(device.device, device.summary)

Devices are processed one after another.  A failing device is logged
and recorded in the :class:`RunReport`; it never stops the devices
after it.  SIGINT / SIGTERM stop the run before the next device
starts.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import uuid

from tasmota_config._config import DesiredConfig, load_desired_config
from tasmota_config._errors import build_error_payload
from tasmota_config._logging import configure_logging
from tasmota_config._mqtt import MqttClient, MqttLifecycle, MqttPort
from tasmota_config._reconciler import ReconcileOptions, reconcile_device
from tasmota_config._report import DeviceOutcome, DeviceReport, RunReport
from tasmota_config._settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_NAME = "tasmota-config"


def select_devices(config: DesiredConfig, device_filter: str | None) -> list[str]:
    """Names of the devices to process, in document order.

    An unknown *device_filter* selects nothing (and logs a warning).
    """
    if not device_filter:
        return list(config.devices)
    if device_filter not in config.devices:
        logger.warning("Device %r is not configured, nothing to do", device_filter)
        return []
    for name in config.devices:
        if name != device_filter:
            logger.debug(
                "Skipping device %s as requested",
                name,
                extra={"device": name},
            )
    return [device_filter]


async def reconcile_all(
    mqtt: MqttPort,
    config: DesiredConfig,
    options: ReconcileOptions,
    *,
    device_filter: str | None = None,
    shutdown_event: asyncio.Event | None = None,
) -> RunReport:
    """Reconcile every selected device, isolating failures per device.

    Args:
        mqtt: Connected MQTT port.
        config: The desired-state document.
        options: Options threaded into every device pass.
        device_filter: Only process the device with this name.
        shutdown_event: When set, no further device is started.

    Returns:
        The device reports in processing order.
    """
    report = RunReport()
    names = select_devices(config, device_filter)
    for index, name in enumerate(names):
        if shutdown_event is not None and shutdown_event.is_set():
            logger.warning(
                "Shutdown requested, skipping %d remaining device(s)",
                len(names) - index,
            )
            report.interrupted = True
            break
        try:
            device_report = await reconcile_device(mqtt, config, name, options)
        except Exception as exc:
            logger.exception(
                "Unexpected error while processing device %s",
                name,
                extra={"device": name},
            )
            device_report = DeviceReport(
                device=name,
                outcome=DeviceOutcome.FAILED,
                failure=build_error_payload(exc),
            )
        report.add(device_report)
    return report


class App:
    """Composition root and run orchestrator.

    Args:
        name: Service name used in logs and the generated client id.
        version: Application version reported by ``--version``.
        description: One-line description shown in ``--help``.
        settings_class: Settings subclass to instantiate at startup.
    """

    def __init__(
        self,
        name: str = DEFAULT_NAME,
        version: str = "0.0.0",
        *,
        description: str = "Reconcile Tasmota device settings over MQTT",
        settings_class: type[Settings] = Settings,
    ) -> None:
        self._name = name
        self._version = version
        self._description = description
        self._settings_class = settings_class

    # --- Lifecycle ---------------------------------------------------------

    def run(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        config: DesiredConfig | None = None,
        shutdown_event: asyncio.Event | None = None,
    ) -> RunReport:
        """Run one reconciliation (blocking, synchronous entrypoint).

        All parameters are optional and intended for programmatic or
        test use.

        Args:
            mqtt: Override MQTT client (e.g. ``MockMqttClient``).
                When ``None``, a real ``MqttClient`` is created from
                settings.
            settings: Override settings (skip env-file loading).
            config: Override the desired-state document (skip
                loading ``settings.config_file``).
            shutdown_event: Override shutdown event (skip OS signal
                handlers).

        See Also:
            :meth:`cli` — CLI entrypoint with Typer argument parsing.
        """
        return asyncio.run(
            self._run_async(
                mqtt=mqtt,
                settings=settings,
                config=config,
                shutdown_event=shutdown_event,
            ),
        )

    def cli(self) -> None:
        """Run with CLI argument parsing (``--config``, ``--dry-run``, ...)."""
        from tasmota_config._cli import build_cli

        cli = build_cli(self)
        cli(standalone_mode=True)

    async def _run_async(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        config: DesiredConfig | None = None,
        shutdown_event: asyncio.Event | None = None,
    ) -> RunReport:
        """Async orchestration.

        1. Bootstrap settings, logging and the desired-state document.
        2. Connect to the broker (unless an MQTT port was injected).
        3. Reconcile the selected devices.
        4. Disconnect and log a summary.

        Raises:
            ConfigError: The desired-state document could not be loaded.
            ConnectionError: The broker was not reachable in time.
        """
        resolved_settings = settings if settings is not None else self._settings_class()
        configure_logging(
            resolved_settings.logging,
            service=self._name,
            version=self._version,
        )

        resolved_config = (
            config
            if config is not None
            else load_desired_config(resolved_settings.config_file)
        )
        options = ReconcileOptions.from_settings(resolved_settings)
        mqtt = self._create_mqtt(mqtt, resolved_settings)
        shutdown_event = self._install_signal_handlers(shutdown_event)

        if options.dry_run:
            logger.info("Dry-run requested, no changes will be sent")

        if isinstance(mqtt, MqttLifecycle):
            await mqtt.start()
        try:
            if isinstance(mqtt, MqttLifecycle):
                await self._connect(mqtt, resolved_settings)
            report = await reconcile_all(
                mqtt,
                resolved_config,
                options,
                device_filter=resolved_settings.device,
                shutdown_event=shutdown_event,
            )
        finally:
            if isinstance(mqtt, MqttLifecycle):
                await mqtt.stop()

        logger.info(
            "Run finished: %d in sync, %d applied, %d suppressed, %d failed",
            report.count(DeviceOutcome.IN_SYNC),
            report.count(DeviceOutcome.APPLIED),
            report.count(DeviceOutcome.SUPPRESSED),
            report.count(DeviceOutcome.FAILED),
        )
        return report

    # --- _run_async helpers ------------------------------------------------

    def _create_mqtt(
        self,
        mqtt: MqttPort | None,
        resolved_settings: Settings,
    ) -> MqttPort:
        """Create the MQTT client, or return the injected one.

        When no explicit ``client_id`` is configured, generates one
        from the app name and a short random suffix (e.g.
        ``"tasmota-config-a1b2c3d4"``).
        """
        if mqtt is not None:
            return mqtt
        mqtt_settings = resolved_settings.mqtt
        if not mqtt_settings.client_id:
            generated_id = f"{self._name}-{uuid.uuid4().hex[:8]}"
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": generated_id},
            )
        return MqttClient(settings=mqtt_settings)

    @staticmethod
    async def _connect(mqtt: MqttLifecycle, settings: Settings) -> None:
        timeout = settings.mqtt.command_timeout
        try:
            await mqtt.wait_connected(timeout)
        except TimeoutError as exc:
            msg = (
                f"Unable to connect to broker {settings.mqtt.host}:"
                f"{settings.mqtt.port} within {timeout:g}s"
            )
            raise ConnectionError(msg) from exc

    def _install_signal_handlers(
        self,
        shutdown_event: asyncio.Event | None,
    ) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers. Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            # Not available on every platform (e.g. Windows event loops)
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, event.set)
        return event
