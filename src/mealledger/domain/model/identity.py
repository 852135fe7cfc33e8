"""Customer identity value object."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Identity:
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name.strip(), self.last_name.strip()) if part)

    @classmethod
    def from_full_name(
        cls,
        full_name: str,
        *,
        email: str | None = None,
        phone: str | None = None,
    ) -> Identity:
        first_name, last_name = split_full_name(full_name)
        return cls(first_name=first_name, last_name=last_name, email=email, phone=phone)


def split_full_name(full_name: str) -> tuple[str, str]:
    """Split ``"Mary Ann Smith"`` into ``("Mary", "Ann Smith")``."""

    parts = full_name.split()
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], " ".join(parts[1:])
