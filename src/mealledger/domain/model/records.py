"""Record shape shared with the record store gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class StoredRecord:
    """One row of a named collection: identifier, creation time and raw fields."""

    id: str
    created_at: datetime
    fields: Mapping[str, object] = field(default_factory=dict["str", "object"])

    def get_str(self, name: str) -> str:
        value = self.fields.get(name)
        if value is None:
            return ""
        return str(value).strip()

    def get_int(self, name: str) -> int:
        value = self.fields.get(name)
        if value is None or isinstance(value, bool):
            return 0
        try:
            return int(float(str(value)))
        except ValueError:
            return 0

    def get_bool(self, name: str) -> bool:
        return bool(self.fields.get(name, False))

    def get_links(self, name: str) -> tuple[str, ...]:
        value = self.fields.get(name)
        if isinstance(value, list | tuple):
            return tuple(str(item) for item in value)
        if isinstance(value, str) and value:
            return (value,)
        return ()
