"""MQTT topic addressing for Tasmota devices.

Topic layout::

    {stat_prefix}/{device}/RESULT       ← query results (subscribed)
    {command_prefix}/{device}/{SETTING} ← per-setting query (empty payload)
    {command_prefix}/{device}/BackLog   ← batched setting changes

Prefixes and device segments are trimmed of boundary slashes so
``"cmnd/"`` and ``"/kitchen/"`` combine to ``cmnd/kitchen/...``.
"""

from __future__ import annotations

from dataclasses import dataclass

RESULT_SUFFIX = "RESULT"
BACKLOG_SUFFIX = "BackLog"


def build_topic(prefix: str, segment: str, suffix: str) -> str:
    """Join *prefix*, *segment* and *suffix* with ``/``.

    Leading and trailing slashes are stripped from *prefix* and
    *segment* independently; *suffix* is used verbatim.
    """
    return "/".join((prefix.strip("/"), segment.strip("/"), suffix))


@dataclass(frozen=True, slots=True)
class DeviceTopics:
    """The three channel roles of one device."""

    command_prefix: str
    stat_prefix: str
    segment: str

    @property
    def result(self) -> str:
        """Topic the device answers queries on."""
        return build_topic(self.stat_prefix, self.segment, RESULT_SUFFIX)

    @property
    def backlog(self) -> str:
        """Topic accepting a ``; ``-separated batch of commands."""
        return build_topic(self.command_prefix, self.segment, BACKLOG_SUFFIX)

    def setting(self, name: str) -> str:
        """Topic that queries (empty payload) or sets *name*."""
        return build_topic(self.command_prefix, self.segment, name)
