"""Typed setting values.

Desired values come from YAML and actual values from JSON replies, so
both sides are dynamically typed scalars.  :class:`SettingValue` closes
them into four kinds with explicit comparison and display rules:

- ``INT`` and ``FLOAT`` compare numerically with each other
  (``300 == 300.0``).
- ``STRING`` and ``BOOL`` compare only against the same kind
  (``"300" != 300``, ``True != 1``).

Display follows what the firmware accepts in a ``BackLog`` command:
integral floats drop the fractional part and booleans are spelled
``true`` / ``false``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TypeAlias

Scalar: TypeAlias = int | float | str | bool
"""Raw scalar accepted by :meth:`SettingValue.of`."""

# Above this magnitude floats keep their exponent notation.
_PLAIN_FLOAT_LIMIT = 1e21


class ValueKind(StrEnum):
    """Closed set of value kinds."""

    INT = "int"
    FLOAT = "float"
    STRING = "string"
    BOOL = "bool"


_NUMERIC_KINDS = frozenset({ValueKind.INT, ValueKind.FLOAT})


@dataclass(frozen=True, slots=True, eq=False)
class SettingValue:
    """A scalar setting value tagged with its kind."""

    kind: ValueKind
    value: Scalar

    @classmethod
    def of(cls, raw: object) -> SettingValue:
        """Wrap a native scalar.

        Raises:
            TypeError: If *raw* is not an int, float, str or bool.
        """
        match raw:
            # bool is a subclass of int, so it must be matched first
            case bool():
                return cls(ValueKind.BOOL, raw)
            case int():
                return cls(ValueKind.INT, raw)
            case float():
                return cls(ValueKind.FLOAT, raw)
            case str():
                return cls(ValueKind.STRING, raw)
            case _:
                msg = f"Unsupported setting value {raw!r} ({type(raw).__name__})"
                raise TypeError(msg)

    @property
    def is_numeric(self) -> bool:
        return self.kind in _NUMERIC_KINDS

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SettingValue):
            return NotImplemented
        if self.is_numeric and other.is_numeric:
            return self.value == other.value
        return self.kind is other.kind and self.value == other.value

    def __hash__(self) -> int:
        # hash(300) == hash(300.0), consistent with numeric equality
        if self.is_numeric:
            return hash(self.value)
        return hash((self.kind, self.value))

    def display(self) -> str:
        """Render the value as a command argument."""
        match self.kind:
            case ValueKind.BOOL:
                return "true" if self.value else "false"
            case ValueKind.FLOAT:
                number = float(self.value)
                if number.is_integer() and abs(number) < _PLAIN_FLOAT_LIMIT:
                    return str(int(number))
                return repr(number)
            case _:
                return str(self.value)

    def describe(self) -> str:
        """Render value and kind for log output, e.g. ``'60' (string)``."""
        return f"{self.value!r} ({self.kind})"

    def __str__(self) -> str:
        return self.display()
