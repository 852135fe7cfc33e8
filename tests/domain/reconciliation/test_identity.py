from __future__ import annotations

from mealledger.domain.model import Identity, MatchKind
from mealledger.domain.reconciliation import (
    IdentityRules,
    fuzzy_matches,
    identity_key,
    normalize_email,
    resolve,
    same_person,
)
from mealledger.domain.reconciliation.identity import name_tokens


def _identity_of(identity: Identity) -> Identity:
    return identity


def test_normalize_email_drops_placeholders() -> None:
    rules = IdentityRules(placeholder_domains=frozenset({"noemail.invalid"}))

    assert normalize_email("  Ann@Example.ORG ") == "ann@example.org"
    assert normalize_email("Declined to provide") is None
    assert normalize_email("") is None
    assert normalize_email(None) is None
    assert normalize_email("walkin@noemail.invalid", rules) is None


def test_identity_key_collapses_case_and_whitespace() -> None:
    key = identity_key(Identity(first_name="  MARY  ANN ", last_name="Smith"))

    assert key.first_name == "mary ann"
    assert key.last_name == "smith"
    assert key.email is None
    assert key.usable


def test_identity_without_name_or_email_is_unusable() -> None:
    assert not identity_key(Identity(email="n/a")).usable


def test_shared_email_is_the_same_person_despite_name_variants() -> None:
    left = Identity(first_name="Bob", last_name="Stone", email="bob@example.org")
    right = Identity(first_name="Robert", last_name="Stone", email="BOB@example.org")

    assert same_person(left, right)


def test_name_match_requires_both_sides_without_email() -> None:
    with_email = Identity(first_name="Ann", last_name="Lee", email="ann@example.org")
    without_email = Identity(first_name="ann", last_name="LEE")
    other_without = Identity(first_name="Ann", last_name="Lee")

    assert not same_person(with_email, without_email)
    assert same_person(without_email, other_without)


def test_different_emails_are_different_people() -> None:
    left = Identity(first_name="Ann", last_name="Lee", email="ann@example.org")
    right = Identity(first_name="Ann", last_name="Lee", email="ann.lee@example.org")

    assert not same_person(left, right)


def test_resolve_returns_every_exact_match() -> None:
    existing = [
        Identity(first_name="Ann", last_name="Lee"),
        Identity(first_name="Bob", last_name="Stone"),
        Identity(first_name="ANN", last_name="lee"),
    ]

    result = resolve(
        Identity(first_name="Ann", last_name="Lee"),
        existing,
        identity_of=_identity_of,
    )

    assert result.kind is MatchKind.EXACT
    assert result.ambiguous
    assert result.single is None
    assert len(result.matches) == 2


def test_resolve_without_fuzzy_never_loosens() -> None:
    existing = [Identity(first_name="Bryant", last_name="Miller")]

    result = resolve(
        Identity(first_name="Bryan", last_name="Miller"),
        existing,
        identity_of=_identity_of,
    )

    assert result.kind is MatchKind.NONE
    assert result.matches == ()


def test_resolve_fuzzy_finds_transcription_variants() -> None:
    bryant = Identity(first_name="Bryant", last_name="Miller")
    existing = [bryant, Identity(first_name="Carol", last_name="Ng")]

    result = resolve(
        Identity(first_name="Bryan", last_name="Millar"),
        existing,
        identity_of=_identity_of,
        fuzzy=True,
    )

    assert result.kind is MatchKind.FUZZY
    assert result.single is bryant


def test_resolve_exact_wins_over_fuzzy() -> None:
    exact = Identity(first_name="Ann", last_name="Lee")
    existing = [Identity(first_name="Annabel", last_name="Leeds"), exact]

    result = resolve(
        Identity(first_name="Ann", last_name="Lee"),
        existing,
        identity_of=_identity_of,
        fuzzy=True,
    )

    assert result.kind is MatchKind.EXACT
    assert result.matches == (exact,)


def test_name_tokens_skip_short_words_and_punctuation() -> None:
    assert name_tokens("J. R. O'Neil-Ray") == ("oneilray",)
    assert name_tokens("Al Yu") == ()


def test_fuzzy_matches_over_match_on_common_tokens() -> None:
    names = ["Ann Lee", "Joanne Leeds", "Bob Stone"]

    assert fuzzy_matches("Ann Lee", names, name_of=str) == ["Ann Lee", "Joanne Leeds"]
