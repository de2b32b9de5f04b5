"""Tagged outcomes returned by the broker.

A cache short-circuit and a producer run are distinct outcomes; callers
branch on the variant instead of inspecting error messages.
"""

from __future__ import annotations

import dataclasses
import typing

if typing.TYPE_CHECKING:
    from mediabroker.store import CachedResult

TValue = typing.TypeVar("TValue")


@dataclasses.dataclass(frozen=True, slots=True)
class Resolved:
    """The key was already in the persistent cache; no producer ran."""

    location: str
    record: CachedResult


@dataclasses.dataclass(frozen=True, slots=True)
class Executed(typing.Generic[TValue]):
    """A producer ran (for this caller or one it joined) and returned *value*."""

    value: TValue


Outcome = Resolved | Executed[TValue]
