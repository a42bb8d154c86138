"""Correlation of query replies with the setting that was queried.

Tasmota answers every query on the same ``stat/{device}/RESULT`` topic
and the reply carries no request identifier.  Correlation is therefore
temporal: after publishing one query, the *next* payload on the result
topic is taken as its answer.  This only holds while a single query is
in flight per device, which the reconciler guarantees.

The MQTT delivery callback and the reconciler meet at a bounded
:class:`asyncio.Queue`:

- :meth:`ResponseCorrelator.on_message` is the producer.  While the
  pass is running and the queue is full it waits for room instead of
  dropping the payload.
- :meth:`ResponseCorrelator.await_response` is the single consumer.
  ``Queue.get`` is cancellation-safe, so a payload that arrives as the
  timeout fires stays queued rather than being lost.
- :meth:`ResponseCorrelator.close` ends the pass.  A producer waiting
  for room is released and its payload discarded, and later deliveries
  are discarded at once.  The delivery callback runs on the message
  loop every device shares, so it must never wait on a queue nobody
  reads.

The :class:`Correlator` protocol is what the reconciler depends on; a
correlator that matches explicit request identifiers could replace
this one without touching the reconciler.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from tasmota_config._extractors import extract
from tasmota_config._values import SettingValue
from tasmota_config.exceptions import ResponseTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 30


@runtime_checkable
class Correlator(Protocol):
    """Pairs one outstanding query with its reply."""

    async def on_message(self, topic: str, payload: str) -> None: ...

    async def await_response(self, setting: str, timeout: float) -> SettingValue: ...

    def close(self) -> None: ...


class ResponseCorrelator:
    """Temporal reply correlation for one device.

    Args:
        device: Device name, used in log output.
        capacity: Maximum number of replies buffered between the
            delivery callback and :meth:`await_response`.
    """

    def __init__(self, device: str, *, capacity: int = DEFAULT_CAPACITY) -> None:
        self._device = device
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=capacity)
        self._room = asyncio.Event()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of buffered, not yet consumed replies."""
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    async def on_message(self, topic: str, payload: str) -> None:
        """Buffer a reply delivered on the result topic."""
        if self._queue.full() and not self._closed:
            logger.warning(
                "Reply buffer for %s is full, delivery waits for room (topic: %s)",
                self._device,
                topic,
            )
        while self._queue.full() and not self._closed:
            self._room.clear()
            await self._room.wait()

        if self._closed:
            logger.warning(
                "Discarding reply for %s after its pass ended (topic: %s)",
                self._device,
                topic,
            )
            return
        self._queue.put_nowait(payload)

    async def await_response(self, setting: str, timeout: float) -> SettingValue:
        """Wait for the next reply and decode it as the value of *setting*.

        Exactly one buffered payload is consumed per call, whether or
        not it decodes.

        Raises:
            ResponseTimeoutError: No reply within *timeout* seconds.
            ExtractorError: The reply could not be decoded.
        """
        try:
            async with asyncio.timeout(timeout):
                payload = await self._queue.get()
        except TimeoutError as exc:
            msg = f"No reply to {setting} within {timeout:g}s"
            raise ResponseTimeoutError(msg) from exc
        self._room.set()

        logger.debug("Reply for %s/%s: %s", self._device, setting, payload)
        return extract(setting, payload)

    def close(self) -> None:
        """End the pass, releasing any delivery waiting for room."""
        if self._closed:
            return
        self._closed = True
        self._room.set()
        if not self._queue.empty():
            logger.debug(
                "%s: %d unconsumed reply(s) left at end of pass",
                self._device,
                self._queue.qsize(),
            )
