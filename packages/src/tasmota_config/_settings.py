"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables (prefixed
``TASMOTA_CONFIG_``) and/or ``.env`` files.  Nested models use ``__``
as the delimiter in env var names, e.g.
``TASMOTA_CONFIG_MQTT__HOST=broker.local``.

The schema covers three concerns:

* **MQTT** — broker connection and the command timeout that bounds
  every broker round-trip.
* **Logging** — level, format, optional file sink, rotation.
* **Run** — which desired-state document to load, which device to
  limit the run to, and the dry-run / strict toggles.

The desired-state document itself (prefixes, settings, devices) is
*not* part of these settings; it lives in a YAML file loaded by
:mod:`tasmota_config._config`.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings — nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection configuration.

    Environment variables (with prefix and ``__`` nesting)::

        TASMOTA_CONFIG_MQTT__HOST=broker.local
        TASMOTA_CONFIG_MQTT__PORT=1883
        TASMOTA_CONFIG_MQTT__USERNAME=user
        TASMOTA_CONFIG_MQTT__PASSWORD=secret
        TASMOTA_CONFIG_MQTT__COMMAND_TIMEOUT=2.5
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, a "
            "'tasmota-config-{hex8}' identifier is generated at startup."
        ),
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Seconds to wait before reconnecting after connection loss.",
    )
    qos: Literal[1, 2] = Field(
        default=1,
        description=(
            "QoS for queries, batch commands and the result subscription. "
            "At-least-once delivery is required, so 0 is not allowed."
        ),
    )
    command_timeout: Annotated[float, Field(gt=0)] = Field(
        default=2.0,
        description=(
            "Upper bound for every broker round-trip: connect, "
            "subscribe, publish acknowledgement and waiting for a "
            "device reply."
        ),
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    The ``format`` field selects the output format:

    - ``"json"`` — structured JSON lines, one object per record,
      including the device/setting context of reconciliation logs.
    - ``"text"`` (default) — human-readable timestamped format for
      interactive runs.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="text",
        description=(
            "Log output format. "
            "'json' emits structured JSON lines; "
            "'text' emits human-readable timestamped lines."
        ),
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description=(
            "Maximum log file size in megabytes before rotation. "
            "Only applies when ``file`` is set."
        ),
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for a reconciliation run.

    Loaded from environment variables with the prefix
    ``TASMOTA_CONFIG_``, the nested delimiter ``__`` and an optional
    ``.env`` file in the working directory.  CLI options override the
    loaded values (see :mod:`tasmota_config._cli`).

    Example ``.env``::

        TASMOTA_CONFIG_CONFIG_FILE=/etc/tasmota/config.yaml
        TASMOTA_CONFIG_MQTT__HOST=broker.local
        TASMOTA_CONFIG_MQTT__USERNAME=user
        TASMOTA_CONFIG_MQTT__PASSWORD=secret
        TASMOTA_CONFIG_LOGGING__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="TASMOTA_CONFIG_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
    config_file: str = Field(
        default="config.yaml",
        description="Path to the YAML desired-state document.",
    )
    device: str | None = Field(
        default=None,
        description="Limit the run to the device with this name.",
    )
    dry_run: bool = Field(
        default=False,
        description="Report needed changes without sending BackLog commands.",
    )
    strict: bool = Field(
        default=False,
        description="Exit non-zero when any device fails to reconcile.",
    )
    response_buffer: Annotated[int, Field(ge=1)] = Field(
        default=30,
        description=(
            "Capacity of the per-device queue that buffers replies "
            "between the MQTT delivery callback and the reconciler."
        ),
    )
