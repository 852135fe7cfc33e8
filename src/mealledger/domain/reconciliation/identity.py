"""Identity resolution for ticket buyers and meal-card holders.

Responsibilities of this module:
- normalize (first name, last name, email) into a comparable key
- decide whether two identities denote the same person
- look a candidate up in an in-memory record set (exact, or fuzzy for audits)

Matching rules:
- a shared, usable email is a match
- otherwise a case-insensitive (first, last) match counts only when neither
  side carries a usable email
- fuzzy matching is advisory and must never drive automated writes
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mealledger.domain.model import Identity, MatchKind

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

DEFAULT_PLACEHOLDER_EMAILS = frozenset(
    {
        "declined to provide",
        "no email provided",
        "no-email",
        "none",
        "n/a",
    }
)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_MIN_FUZZY_TOKEN_LENGTH = 3


@dataclass(frozen=True, slots=True)
class IdentityRules:
    """Placeholder values that stand in for a missing email address."""

    placeholder_emails: frozenset[str] = DEFAULT_PLACEHOLDER_EMAILS
    placeholder_domains: frozenset[str] = field(default_factory=frozenset["str"])


DEFAULT_RULES = IdentityRules()


@dataclass(frozen=True, slots=True)
class IdentityKey:
    email: str | None
    first_name: str
    last_name: str

    @property
    def has_name(self) -> bool:
        return bool(self.first_name or self.last_name)

    @property
    def usable(self) -> bool:
        return self.email is not None or self.has_name


@dataclass(frozen=True, slots=True)
class MatchResult[T]:
    kind: MatchKind
    matches: tuple[T, ...] = ()

    @property
    def ambiguous(self) -> bool:
        return len(self.matches) > 1

    @property
    def single(self) -> T | None:
        return self.matches[0] if len(self.matches) == 1 else None


def normalize_text(value: str | None) -> str:
    if not value:
        return ""
    text = unicodedata.normalize("NFKC", value).casefold().strip()
    return _WHITESPACE.sub(" ", text)


def normalize_email(value: str | None, rules: IdentityRules = DEFAULT_RULES) -> str | None:
    """Return the lower-cased address, or ``None`` for blanks and placeholders."""

    email = normalize_text(value)
    if not email or "@" not in email:
        return None
    if email in rules.placeholder_emails:
        return None
    domain = email.rsplit("@", 1)[1]
    if domain in rules.placeholder_domains:
        return None
    return email


def identity_key(identity: Identity, rules: IdentityRules = DEFAULT_RULES) -> IdentityKey:
    return IdentityKey(
        email=normalize_email(identity.email, rules),
        first_name=normalize_text(identity.first_name),
        last_name=normalize_text(identity.last_name),
    )


def same_person(left: Identity, right: Identity, rules: IdentityRules = DEFAULT_RULES) -> bool:
    return _keys_match(identity_key(left, rules), identity_key(right, rules))


def _keys_match(left: IdentityKey, right: IdentityKey) -> bool:
    if left.email is not None or right.email is not None:
        return left.email is not None and left.email == right.email
    if not left.has_name or not right.has_name:
        return False
    return (left.first_name, left.last_name) == (right.first_name, right.last_name)


def resolve[T](
    candidate: Identity,
    existing: Iterable[T],
    *,
    identity_of: Callable[[T], Identity],
    rules: IdentityRules = DEFAULT_RULES,
    fuzzy: bool = False,
) -> MatchResult[T]:
    """Match ``candidate`` against ``existing``.

    Exact matches win. With ``fuzzy=True`` and no exact match, the permissive
    token rule of :func:`fuzzy_matches` is applied; those results are for human
    review only.
    """

    key = identity_key(candidate, rules)
    if not key.usable:
        return MatchResult(kind=MatchKind.NONE)

    records = list(existing)
    exact = tuple(
        record for record in records if _keys_match(key, identity_key(identity_of(record), rules))
    )
    if exact:
        return MatchResult(kind=MatchKind.EXACT, matches=exact)

    if fuzzy and key.has_name:
        loose = fuzzy_matches(
            candidate.full_name,
            records,
            name_of=lambda record: identity_of(record).full_name,
        )
        if loose:
            return MatchResult(kind=MatchKind.FUZZY, matches=tuple(loose))

    return MatchResult(kind=MatchKind.NONE)


def name_tokens(full_name: str) -> tuple[str, ...]:
    """Lower-cased, punctuation-free words longer than two characters."""

    cleaned = _PUNCTUATION.sub("", normalize_text(full_name))
    return tuple(word for word in cleaned.split() if len(word) >= _MIN_FUZZY_TOKEN_LENGTH)


def fuzzy_matches[T](
    full_name: str,
    existing: Iterable[T],
    *,
    name_of: Callable[[T], str],
) -> list[T]:
    """Records whose full name contains any significant token of ``full_name``.

    Catches transcription variants ("Bryan" finds "Bryant") and over-matches on
    common tokens, so callers present the result for confirmation.
    """

    tokens = name_tokens(full_name)
    if not tokens:
        return []
    matches: list[T] = []
    for record in existing:
        haystack = normalize_text(name_of(record))
        if any(token in haystack for token in tokens):
            matches.append(record)
    return matches
