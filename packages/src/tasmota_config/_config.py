"""Desired-state document.

The document is a YAML file describing the settings every device
should have::

    command_prefix: cmnd        # optional, default "cmnd"
    stat_prefix: stat           # optional, default "stat"

    settings:                   # applied to every device
      PowerOnState: 3
      TelePeriod: 300
      Timezone: "99"

    devices:
      kitchen_plug:
        topic: kitchen/plug     # MQTT segment of the device
        settings:               # per-device overrides, win over globals
          TelePeriod: 60
      garage:
        topic: garage

Setting values must be YAML scalars (int, float, string, bool).  Values
are parsed strictly: ``"300"`` stays a string and does not match a
numeric reply of ``300``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from tasmota_config._topics import DeviceTopics
from tasmota_config._values import SettingValue
from tasmota_config.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_PREFIX = "cmnd"
DEFAULT_STAT_PREFIX = "stat"

SettingScalar = StrictBool | StrictInt | StrictFloat | StrictStr


class DeviceConfig(BaseModel):
    """One device entry of the desired-state document."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    topic: str = Field(description="MQTT topic segment of the device.")
    settings: dict[str, SettingScalar] = Field(
        default_factory=dict,
        description="Per-device settings, overriding the global ones.",
    )

    @field_validator("settings", mode="before")
    @classmethod
    def empty_settings(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("topic")
    @classmethod
    def topic_not_blank(cls, value: str) -> str:
        if not value.strip("/"):
            msg = "topic must contain more than slashes"
            raise ValueError(msg)
        return value


class DesiredConfig(BaseModel):
    """Root of the desired-state document."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    command_prefix: str = Field(
        default=DEFAULT_COMMAND_PREFIX,
        description="Prefix of command topics.",
    )
    stat_prefix: str = Field(
        default=DEFAULT_STAT_PREFIX,
        description="Prefix of status topics.",
    )
    settings: dict[str, SettingScalar] = Field(
        default_factory=dict,
        description="Settings applied to every device.",
    )
    devices: dict[str, DeviceConfig] = Field(
        default_factory=dict,
        description="Device name → device entry.",
    )

    @field_validator("command_prefix", "stat_prefix", mode="before")
    @classmethod
    def default_prefix(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("settings", "devices", mode="before")
    @classmethod
    def empty_maps(cls, value: Any) -> Any:
        return {} if value is None else value

    def topics_for(self, device: str) -> DeviceTopics:
        """Topic roles of *device*.

        Raises:
            KeyError: If *device* is not configured.
        """
        return DeviceTopics(
            command_prefix=self.command_prefix,
            stat_prefix=self.stat_prefix,
            segment=self.devices[device].topic,
        )

    def effective_settings(self, device: str) -> dict[str, SettingValue]:
        """Merge global and device settings; the device wins per key.

        Global keys keep their document order, device-only keys follow
        in theirs, so iteration is stable across runs.

        Raises:
            KeyError: If *device* is not configured.
        """
        return {
            name: SettingValue.of(value)
            for name, value in merge_settings(
                self.settings,
                self.devices[device].settings,
            ).items()
        }


def merge_settings(
    global_settings: dict[str, Any] | None,
    device_settings: dict[str, Any] | None,
) -> dict[str, Any]:
    """Return a new mapping of *global_settings* overlaid by *device_settings*."""
    merged: dict[str, Any] = dict(global_settings or {})
    merged.update(device_settings or {})
    return merged


def load_desired_config(path: str | Path) -> DesiredConfig:
    """Read and validate the desired-state document at *path*.

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML,
            or does not match the schema.
    """
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except OSError as exc:
        msg = f"Unable to open config file {path}: {exc}"
        raise ConfigError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"Unable to decode config file {path}: {exc}"
        raise ConfigError(msg) from exc

    if not isinstance(raw, dict):
        msg = f"Config file {path} must contain a mapping at the top level"
        raise ConfigError(msg)

    try:
        config = DesiredConfig.model_validate(raw)
    except ValidationError as exc:
        msg = f"Invalid config file {path}: {exc}"
        raise ConfigError(msg) from exc

    logger.debug(
        "Loaded %d device(s) and %d global setting(s) from %s",
        len(config.devices),
        len(config.settings),
        path,
    )
    return config
