"""Settings read from the process environment.

The CLI fills the environment from ``.env`` before any of these run.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from .errors import MissingConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def require_env_vars(names: Sequence[str]) -> dict[str, str]:
    """Values of all ``names``; raises listing every one that is unset or blank."""

    values = {name: _clean(os.getenv(name)) for name in names}
    missing = [name for name, value in values.items() if value is None]
    if missing:
        raise MissingConfigurationError(missing)
    return {name: value for name, value in values.items() if value is not None}


def require_env_var(name: str) -> str:
    return require_env_vars([name])[name]


def optional_env_var(name: str, default: str | None = None) -> str | None:
    value = _clean(os.getenv(name))
    return default if value is None else value
