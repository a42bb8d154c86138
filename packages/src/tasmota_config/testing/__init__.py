"""Public test-support utilities for tasmota-config.

Re-exports test doubles and factories so that test suites can import
everything from a single ``tasmota_config.testing`` namespace instead
of reaching into private modules.

Provided symbols:

- :class:`MockMqttClient` — in-memory MQTT double that records calls
  and answers queries with scripted replies.
- :func:`make_settings` — factory for ``Settings`` without ``.env`` files.
- :func:`make_config` — factory for a ``DesiredConfig`` from plain dicts.
"""

from tasmota_config._mqtt import MockMqttClient
from tasmota_config.testing._settings import make_config, make_settings

__all__ = [
    "MockMqttClient",
    "make_config",
    "make_settings",
]
