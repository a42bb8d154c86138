"""Custom exception hierarchy for tasmota-config."""

from __future__ import annotations


class TasmotaConfigError(Exception):
    """Base exception for all tasmota-config errors."""


class ConfigError(TasmotaConfigError):
    """Desired-state document is missing, unreadable or invalid."""


# ---------------------------------------------------------------------------
# Reply decoding
# ---------------------------------------------------------------------------


class ExtractorError(TasmotaConfigError, ValueError):
    """A reply payload could not be turned into a setting value."""

    def __init__(self, message: str, *, setting: str | None = None) -> None:
        self.setting = setting
        super().__init__(message)


class MalformedPayloadError(ExtractorError):
    """Payload is not a JSON object."""


class FieldNotFoundError(ExtractorError):
    """Expected JSON field is absent from the reply."""


class TypeMismatchError(ExtractorError):
    """JSON field holds a value of an unexpected kind."""


class UnexpectedShapeError(ExtractorError):
    """Module selection did not contain exactly one entry."""


class ResponseTimeoutError(TasmotaConfigError, TimeoutError):
    """No reply arrived on the result topic within the command timeout."""


# ---------------------------------------------------------------------------
# Device reconciliation
# ---------------------------------------------------------------------------


class ReconcileError(TasmotaConfigError):
    """Reconciliation of one device was aborted.

    The triggering exception, if any, is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        device: str,
        setting: str | None = None,
    ) -> None:
        self.device = device
        self.setting = setting
        super().__init__(message)


class SubscriptionError(ReconcileError):
    """Subscribing to the device's result topic failed or timed out."""


class QueryPublishError(ReconcileError):
    """Publishing a setting query failed or timed out."""


class ExtractionError(ReconcileError):
    """Waiting for or decoding a query reply failed."""


class ApplyError(ReconcileError):
    """Publishing the BackLog batch failed or timed out."""
