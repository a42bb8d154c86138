"""tasmota-config.

Reconcile the settings of Tasmota devices with a desired-state YAML
document over MQTT.
"""

from importlib.metadata import PackageNotFoundError, version

from tasmota_config._app import App, reconcile_all, select_devices
from tasmota_config._config import (
    DesiredConfig,
    DeviceConfig,
    load_desired_config,
    merge_settings,
)
from tasmota_config._correlator import Correlator, ResponseCorrelator
from tasmota_config._errors import ErrorPayload, build_error_payload
from tasmota_config._extractors import EXTRACTORS, Extractor, ExtractorKind, extract
from tasmota_config._logging import JsonFormatter, TextFormatter, configure_logging
from tasmota_config._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttPort,
)
from tasmota_config._reconciler import (
    DeviceReconciler,
    ReconcileOptions,
    ReconcilerState,
    batch_command,
    reconcile_device,
)
from tasmota_config._report import DeviceOutcome, DeviceReport, Mismatch, RunReport
from tasmota_config._settings import LoggingSettings, MqttSettings, Settings
from tasmota_config._topics import DeviceTopics, build_topic
from tasmota_config._values import SettingValue, ValueKind

try:
    __version__ = version("tasmota-config")
except PackageNotFoundError:
    # Fallback for source checkouts without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # App
    "App",
    "reconcile_all",
    "select_devices",
    # Config
    "DesiredConfig",
    "DeviceConfig",
    "load_desired_config",
    "merge_settings",
    # Topics
    "DeviceTopics",
    "build_topic",
    # Values and extraction
    "EXTRACTORS",
    "Extractor",
    "ExtractorKind",
    "SettingValue",
    "ValueKind",
    "extract",
    # Correlation and reconciliation
    "Correlator",
    "DeviceReconciler",
    "ReconcileOptions",
    "ReconcilerState",
    "ResponseCorrelator",
    "batch_command",
    "reconcile_device",
    # Reports and errors
    "DeviceOutcome",
    "DeviceReport",
    "ErrorPayload",
    "Mismatch",
    "RunReport",
    "build_error_payload",
    # Logging
    "JsonFormatter",
    "TextFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttPort",
    # Settings
    "LoggingSettings",
    "MqttSettings",
    "Settings",
]
