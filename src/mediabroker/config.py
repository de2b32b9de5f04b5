"""Configuration: validated, immutable settings resolved from env and overrides.

Resolution order (highest wins): explicit overrides, ``MEDIABROKER_*``
environment variables (including a project ``.env``), schema defaults.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from mediabroker.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

ENV_PREFIX = "MEDIABROKER_"

_MB = 1024 * 1024


class Settings(BaseModel):
    """Settings schema shared by the broker, the store and the transcoder.

    Example:
        settings = load_settings({"max_concurrent": 4})
        broker = ConcurrencyBroker(store, max_concurrent=settings.max_concurrent)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    database_path: Path = Field(default=Path("data/mediabroker.db"))
    #: The extraction backend tolerates very little parallel load.
    max_concurrent: int = Field(default=2, ge=1)

    container_runtime: str = Field(default="docker", min_length=1)
    container_name: str = Field(default="gronka", min_length=1)
    optimizer_image: str = Field(default="dylanninin/giflossy:latest", min_length=1)
    optimizer_binary: str = Field(default="/bin/gifsicle", min_length=1)
    sandbox_root: str = Field(default="/app", min_length=1)
    #: Host directory mounted at ``sandbox_root``; the process cwd when unset.
    host_root: str | None = None
    timeout_s: float = Field(default=300.0, gt=0)
    max_output_bytes: int = Field(default=10 * _MB, gt=0)

    default_lossy: int = Field(default=35, ge=0, le=100)
    default_optimize: int = Field(default=3, ge=1, le=3)

    @field_validator("container_runtime", "container_name", "optimizer_image", mode="before")
    @classmethod
    def strip_names(cls, v: Any) -> Any:
        """Trim surrounding whitespace on runtime identifiers."""
        if isinstance(v, str):
            return v.strip()
        return v

    def resolved_host_root(self) -> str:
        """Return ``host_root`` or the current working directory."""
        return self.host_root or os.getcwd()


def _env_values() -> dict[str, str]:
    """Collect ``MEDIABROKER_*`` values; the process environment beats ``.env``."""
    known = Settings.model_fields
    merged = {**dotenv_values(find_dotenv(usecwd=True)), **os.environ}
    values: dict[str, str] = {}
    for key, value in merged.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX) :].lower()
        if name in known and value is not None:
            values[name] = value
    return values


def load_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Resolve settings from ``.env``, the environment and *overrides*.

    Raises:
        ConfigurationError: When any value fails validation.
    """
    data: dict[str, Any] = _env_values()
    if overrides:
        data.update(overrides)
    try:
        return Settings(**data)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ())) or "settings"
        raise ConfigurationError(
            f"Invalid configuration for {loc}: {first.get('msg', str(e))}",
            hint=f"Check {ENV_PREFIX}{loc.upper()} or the override passed for {loc!r}.",
        ) from e
