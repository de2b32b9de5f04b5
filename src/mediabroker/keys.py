"""Cache key derivation for media requests.

A key identifies a (source URL, output-affecting parameters) pair. Only a
fixed set of recognized parameters participate; anything unset (``None``) or
unrecognized is ignored so that cosmetic differences in a caller's options
never split the cache.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Literal

from mediabroker.errors import ValidationError
from mediabroker.hashing import hash_string

if TYPE_CHECKING:
    from collections.abc import Mapping

_FieldType = Literal["str", "number"]

# Canonical field name -> canonical value type.
RECOGNIZED_FIELDS: dict[str, _FieldType] = {
    "quality": "str",
    "optimize": "str",
    "lossy": "number",
    "start_time": "number",
    "duration": "number",
    "width": "number",
    "fps": "number",
}

_ALIASES: dict[str, str] = {"startTime": "start_time"}

PAIR_SEPARATOR = "|"
URL_SEPARATOR = "|"


def compute_url_key(url: str) -> str:
    """Return the key for a plain download with no transformation."""
    return hash_string(url)


def compute_parameterized_key(url: str, options: Mapping[str, Any] | None) -> str:
    """Return the key for *url* transformed by *options*.

    Degrades to :func:`compute_url_key` when no recognized, defined option
    is present, so simple downloads keep their historical keys.
    """
    normalized = normalize_options(options)
    if not normalized:
        return compute_url_key(url)
    serialized = PAIR_SEPARATOR.join(
        f"{name}:{value}" for name, value in sorted(normalized.items())
    )
    return hash_string(f"{url}{URL_SEPARATOR}{serialized}")


def normalize_options(options: Mapping[str, Any] | None) -> dict[str, str]:
    """Keep recognized, defined fields and render each in canonical form.

    Canonical names take precedence over their aliases when both are given.
    """
    if not options:
        return {}
    out: dict[str, str] = {}
    for raw_name, value in options.items():
        name = _ALIASES.get(raw_name, raw_name)
        field_type = RECOGNIZED_FIELDS.get(name)
        if field_type is None or value is None:
            continue
        if name != raw_name and name in options and options[name] is not None:
            continue
        if field_type == "number":
            out[name] = _canonical_number(name, value)
        else:
            out[name] = _canonical_str(value)
    return out


def _canonical_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _canonical_number(name: str, value: Any) -> str:
    if isinstance(value, bool):
        raise ValidationError(f"{name}: expected a number, got a boolean")
    if isinstance(value, int):
        return str(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{name}: expected a number, got {value!r}",
            hint="Numeric options accept ints, floats or numeric strings.",
        ) from None
    if not math.isfinite(number):
        raise ValidationError(f"{name}: expected a finite number, got {value!r}")
    if number.is_integer():
        return str(int(number))
    return repr(number)
