"""Cache key derivation: determinism, sensitivity and backward compatibility."""

from __future__ import annotations

from typing import Any

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from mediabroker.errors import ValidationError
from mediabroker.hashing import hash_string
from mediabroker.keys import (
    RECOGNIZED_FIELDS,
    compute_parameterized_key,
    compute_url_key,
    normalize_options,
)

pytestmark = pytest.mark.unit

URL = "https://x/a.mp4"

_values = st.one_of(
    st.none(),
    st.integers(min_value=0, max_value=10_000),
    st.sampled_from(["high", "low", "medium"]),
)
_options = st.dictionaries(
    keys=st.sampled_from([*RECOGNIZED_FIELDS, "caption", "channel"]),
    values=_values,
)


def _numeric_safe(options: dict[str, Any]) -> dict[str, Any]:
    # Numeric fields only take numbers; keep the property about ordering.
    out = {}
    for k, v in options.items():
        if RECOGNIZED_FIELDS.get(k) == "number" and isinstance(v, str):
            continue
        out[k] = v
    return out


def test_url_key_is_sha256_of_url() -> None:
    assert compute_url_key(URL) == hash_string(URL)


@given(options=_options)
@settings(max_examples=50, deadline=None, derandomize=True)
def test_key_ignores_insertion_order(options: dict[str, Any]) -> None:
    """Property: reversing insertion order never changes the key."""
    options = _numeric_safe(options)
    reversed_options = dict(reversed(list(options.items())))
    assert compute_parameterized_key(URL, options) == compute_parameterized_key(
        URL, reversed_options
    )


@given(options=_options)
@settings(max_examples=50, deadline=None, derandomize=True)
def test_none_fields_and_unknown_fields_never_affect_key(options: dict[str, Any]) -> None:
    """Property: dropping undefined or unrecognized fields yields the same key."""
    options = _numeric_safe(options)
    cleaned = {
        k: v for k, v in options.items() if v is not None and k in RECOGNIZED_FIELDS
    }
    assert compute_parameterized_key(URL, options) == compute_parameterized_key(URL, cleaned)


@pytest.mark.parametrize(
    ("field", "a", "b"),
    [
        ("quality", "high", "low"),
        ("optimize", True, False),
        ("lossy", 35, 80),
        ("start_time", 0, 1.5),
        ("duration", 10, 11),
        ("width", 320, 480),
        ("fps", 15, 24),
    ],
)
def test_changing_any_recognized_field_changes_key(field: str, a: Any, b: Any) -> None:
    base = {"quality": "medium", "fps": 10}
    assert compute_parameterized_key(URL, {**base, field: a}) != compute_parameterized_key(
        URL, {**base, field: b}
    )


def test_adding_unrecognized_field_keeps_key() -> None:
    opts = {"fps": 15, "width": 320}
    assert compute_parameterized_key(URL, opts) == compute_parameterized_key(
        URL, {**opts, "reply_ephemeral": True}
    )


def test_no_recognized_field_degrades_to_url_key() -> None:
    assert compute_parameterized_key(URL, {}) == compute_url_key(URL)
    assert compute_parameterized_key(URL, None) == compute_url_key(URL)
    assert compute_parameterized_key(URL, {"fps": None, "foo": 1}) == compute_url_key(URL)


def test_numeric_spellings_share_a_key() -> None:
    keys = {compute_parameterized_key(URL, {"fps": v}) for v in (30, 30.0, "30")}
    assert len(keys) == 1


def test_camel_case_alias_matches_snake_case() -> None:
    assert compute_parameterized_key(URL, {"startTime": 2}) == compute_parameterized_key(
        URL, {"start_time": 2}
    )


def test_canonical_name_wins_over_alias() -> None:
    assert normalize_options({"startTime": 9, "start_time": 2}) == {"start_time": "2"}


def test_normalize_options_renders_canonical_strings() -> None:
    assert normalize_options(
        {"optimize": True, "lossy": 35.0, "start_time": 1.5, "quality": "high"}
    ) == {"optimize": "true", "lossy": "35", "start_time": "1.5", "quality": "high"}


def test_key_input_uses_sorted_field_pairs() -> None:
    expected = hash_string(f"{URL}|fps:15|width:320")
    assert compute_parameterized_key(URL, {"width": 320, "fps": 15}) == expected


@pytest.mark.parametrize("bad", ["fast", True, float("nan"), [1]])
def test_non_numeric_value_for_numeric_field_is_rejected(bad: Any) -> None:
    with pytest.raises(ValidationError) as exc:
        compute_parameterized_key(URL, {"fps": bad})
    assert "fps" in str(exc.value)
