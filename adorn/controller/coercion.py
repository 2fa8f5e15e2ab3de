"""
Scalar coercion for path and query tokens.

Path captures and query values arrive as raw strings; the hint recorded in
the route's ParamModel decides what the handler receives.
"""

import re
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from adorn.faults import ValidationError

from .metadata import ScalarHint


_INT_RE = re.compile(r"^-?\d+$")
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")

_TRUE = frozenset({"true", "1"})
_FALSE = frozenset({"false", "0"})


def _to_int(raw: str) -> int:
    if not _INT_RE.match(raw):
        raise ValueError("Expected integer")
    return int(raw)


def _to_number(raw: str) -> Union[int, float]:
    if not _NUMBER_RE.match(raw):
        raise ValueError("Expected number")
    value = float(raw)
    return int(value) if value.is_integer() and "." not in raw else value


def _to_boolean(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError("Expected boolean")


def _to_uuid(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise ValueError("Invalid uuid") from None


_CONVERTERS: Dict[ScalarHint, Callable[[str], Any]] = {
    ScalarHint.STRING: str,
    ScalarHint.INT: _to_int,
    ScalarHint.NUMBER: _to_number,
    ScalarHint.BOOLEAN: _to_boolean,
    ScalarHint.UUID: _to_uuid,
}


def coerce(value: Any, hint: Optional[ScalarHint], source: str, name: str) -> Any:
    """
    Convert a raw token according to ``hint``.

    A hint means the parameter is a single scalar, so a list (a repeated
    query key) is rejected. ``None`` and values with no hint pass through
    unchanged.

    Raises:
        ValidationError: with ``source`` and ``name`` as the issue path
    """
    if value is None or hint is None:
        return value
    if isinstance(value, list):
        raise ValidationError.for_field(
            source, name, f"Expected a single value, received {len(value)}"
        )
    if not isinstance(value, str):
        return value

    try:
        return _CONVERTERS[hint](value)
    except ValueError as e:
        raise ValidationError.for_field(source, name, f"{e}, received {value!r}") from None


def coerce_all(
    values: Dict[str, Any],
    hints: Dict[str, Optional[ScalarHint]],
    source: str,
) -> Dict[str, Any]:
    """Coerce every hinted key of ``values``, collecting all failures into one error."""
    out = dict(values)
    issues: List[Any] = []
    for name, hint in hints.items():
        if name not in values:
            continue
        try:
            out[name] = coerce(values[name], hint, source, name)
        except ValidationError as e:
            issues.extend(e.issues)
    if issues:
        raise ValidationError(source, issues)
    return out
