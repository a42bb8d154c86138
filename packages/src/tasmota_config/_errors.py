"""Structured error payloads for aborted device passes.

Converts the exception that ended a device's reconciliation into a
structured, JSON-serialisable payload for reports and JSON logs.

Payload schema::

    {
        "error_type": "timeout",
        "message": "No reply to TelePeriod within 2s",
        "device": "kitchen_plug" | null,
        "setting": "TelePeriod" | null,
        "timestamp": "2026-02-14T12:34:56+00:00",
        "details": {}
    }

``error_type`` is looked up from the exception *and* its cause:
reconciler errors wrap the decode or timeout failure that triggered
them, and the cause is the more specific classification (a failed
query reply reports ``field_not_found`` rather than the generic
``extraction_error``).
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from tasmota_config.exceptions import (
    ApplyError,
    ExtractionError,
    FieldNotFoundError,
    MalformedPayloadError,
    QueryPublishError,
    ReconcileError,
    ResponseTimeoutError,
    SubscriptionError,
    TypeMismatchError,
    UnexpectedShapeError,
)

# ---------------------------------------------------------------------------
# Error type mapping
# ---------------------------------------------------------------------------

ERROR_TYPES: dict[type[Exception], str] = {
    SubscriptionError: "subscription_error",
    QueryPublishError: "query_error",
    ExtractionError: "extraction_error",
    ApplyError: "apply_error",
    ResponseTimeoutError: "timeout",
    TimeoutError: "timeout",
    FieldNotFoundError: "field_not_found",
    TypeMismatchError: "type_mismatch",
    UnexpectedShapeError: "unexpected_shape",
    MalformedPayloadError: "malformed_payload",
}
"""Exception class → machine-readable ``error_type``."""

# Reconciler errors whose cause carries the better classification.
_CAUSE_CLASSIFIED = (ExtractionError,)

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error payload."""

    error_type: str
    message: str
    device: str | None
    setting: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------


def classify(
    error: BaseException,
    error_type_map: dict[type[Exception], str] | None = None,
) -> str:
    """Return the ``error_type`` string for *error*.

    Looks up the exact class of the exception; subclasses are not
    matched.  For wrapping reconciler errors the cause is tried first.
    Unknown exceptions fall back to ``"error"``.
    """
    resolved_map = ERROR_TYPES if error_type_map is None else error_type_map
    cause = error.__cause__
    if isinstance(error, _CAUSE_CLASSIFIED) and cause is not None:
        cause_type = resolved_map.get(type(cause))
        if cause_type is not None:
            return cause_type
    return resolved_map.get(type(error), "error")


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    Device and setting are taken from :class:`ReconcileError`
    attributes when present.

    Args:
        error: The exception to convert.
        error_type_map: Optional replacement for :data:`ERROR_TYPES`.
        details: Optional dict of additional context to attach to the payload.
            Defaults to an empty dict when ``None``.
        clock: Optional callable returning a :class:`~datetime.datetime`.
            Defaults to ``datetime.now(UTC)``.

    Returns:
        A frozen dataclass ready for serialisation.
    """
    device = error.device if isinstance(error, ReconcileError) else None
    setting = error.setting if isinstance(error, ReconcileError) else None
    message = str(error)
    cause = error.__cause__
    if cause is not None:
        message = f"{message}: {str(cause) or type(cause).__name__}"
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=classify(error, error_type_map),
        message=message,
        device=device,
        setting=setting,
        timestamp=now.isoformat(),
        details=details or {},
    )
