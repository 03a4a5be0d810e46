"""Enumerations and shared field types of the workflow contract.

The wire format uses PascalCase field names; models subclass
``ContractModel`` so Python code can use snake_case attributes while
documents keep the original keys.
"""

from __future__ import annotations

import re
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_pascal


class ContractModel(BaseModel):
    """Base model for every object of the workflow document."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)


# =============================================================================
# Enumerations
# =============================================================================


class ProviderType(str, Enum):
    """OS subsystem a rule probes."""

    REGISTRY = "Registry"
    FILE_SYSTEM = "FileSystem"
    ACL = "ACL"
    WMI = "WMI"
    EVENT_LOG = "EventLog"
    SERVICE = "Service"
    PROCESS = "Process"
    CUSTOM = "Custom"


class OperatorType(str, Enum):
    """Operators a condition can apply to a probed value."""

    EQUALS = "Equals"
    NOT_EQUALS = "NotEquals"
    GREATER_THAN = "GreaterThan"
    LESS_THAN = "LessThan"
    CONTAINS = "Contains"
    NOT_CONTAINS = "NotContains"
    REGEX_MATCH = "RegexMatch"
    EXISTS = "Exists"
    NOT_EXISTS = "NotExists"


PRESENCE_OPERATORS = frozenset({OperatorType.EXISTS, OperatorType.NOT_EXISTS})


class RunModeType(str, Enum):
    """How a rule may be scheduled relative to other rules."""

    INDEPENDENT = "Independent"
    SEQUENTIAL = "Sequential"


class ResultStatus(str, Enum):
    """Outcome category of a rule evaluation."""

    PASSED = "Passed"
    FAILED = "Failed"
    PROBE_ERROR = "ProbeError"
    TIMEOUT = "Timeout"
    EVALUATOR_ERROR = "EvaluatorError"
    SKIPPED = "Skipped"


ERROR_STATUSES = frozenset({
    ResultStatus.PROBE_ERROR,
    ResultStatus.TIMEOUT,
    ResultStatus.EVALUATOR_ERROR,
})


# =============================================================================
# Durations
# =============================================================================

# "hh:mm:ss", "hh:mm:ss.fff" or "d.hh:mm:ss"; hours are not capped at 24
_CLOCK_DURATION = re.compile(r"(?:(\d+)\.)?(\d+):([0-5]?\d):([0-5]?\d(?:\.\d+)?)")


def _parse_duration(value: Any) -> Any:
    if isinstance(value, str):
        match = _CLOCK_DURATION.fullmatch(value.strip())
        if match:
            days, hours, minutes, seconds = match.groups()
            return timedelta(
                days=int(days or 0),
                hours=int(hours),
                minutes=int(minutes),
                seconds=float(seconds),
            )
    return value


def format_duration(value: timedelta) -> str:
    """Render a duration as ``hh:mm:ss`` (with microseconds when present)."""
    micros = value // timedelta(microseconds=1)
    sign = "-" if micros < 0 else ""
    seconds, micros = divmod(abs(micros), 1_000_000)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    text = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
    if micros:
        text += f".{micros:06d}"
    return text


Duration = Annotated[
    timedelta,
    BeforeValidator(_parse_duration),
    PlainSerializer(format_duration, return_type=str, when_used="json"),
]


# =============================================================================
# Numbers
# =============================================================================


def to_decimal(value: Any) -> Decimal | None:
    """Numeric view of ``value``, or None when it is not numeric.

    Floats go through their shortest ``repr``, numeric strings are parsed;
    booleans, NaN and infinities are never numeric.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        number = Decimal(repr(value))
    elif isinstance(value, Decimal):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None
