"""Parser for the free-text ticket breakdown in payment-platform exports.

Exports describe an order as ``"2x NYE Dance (Member), 1x NYE Dance (Nonmember)"``.
Each event maps its ticket labels to tiers; segments naming other items (a
donation, a raffle ticket for a different event) are kept as unrecognized.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mealledger.domain.model import Tier

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_SEGMENT_SPLIT = re.compile(r"[,;\n]+")
_QUANTITY_LABEL = re.compile(r"^\s*(\d+)\s*[x×]\s*(.+?)\s*$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ParsedDetails:
    counts: dict[Tier, int] = field(default_factory=dict["Tier", "int"])
    unrecognized: tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def empty(self) -> bool:
        return self.total == 0


def parse_details(text: str | None, labels: Mapping[Tier, Sequence[str]]) -> ParsedDetails:
    if not text or not text.strip():
        return ParsedDetails()

    tier_by_label = {
        label.casefold().strip(): tier
        for tier, tier_labels in labels.items()
        for label in tier_labels
    }
    counts: dict[Tier, int] = {}
    unrecognized: list[str] = []
    for segment in _SEGMENT_SPLIT.split(text):
        if not segment.strip():
            continue
        match = _QUANTITY_LABEL.match(segment)
        if match is None:
            unrecognized.append(segment.strip())
            continue
        quantity = int(match.group(1))
        tier = tier_by_label.get(match.group(2).casefold())
        if tier is None:
            unrecognized.append(segment.strip())
            continue
        counts[tier] = counts.get(tier, 0) + quantity

    return ParsedDetails(counts=counts, unrecognized=tuple(unrecognized))
