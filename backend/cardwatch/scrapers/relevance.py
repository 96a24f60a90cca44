"""Decide whether a listing title is about a watched search phrase.

Marketplace search engines return loosely related results (other cards of
the same set, accessories, lots), so every title is re-checked locally.
Reference codes ("199/165", "ex 4") identify one specific edition and are
mandatory; ordinary words only need 80% coverage.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple


STOP_WORDS: FrozenSet[str] = frozenset({
    # French
    "le", "la", "les", "l", "de", "du", "des", "d", "un", "une", "et", "ou",
    # English
    "the", "a", "an", "and", "or",
})

# Share of ordinary tokens allowed to be absent from the title
MAX_MISSING_RATIO = 0.2

# Tokens this short collide with fragments of longer words ("ex" in "extra")
SHORT_TOKEN_LENGTH = 3

# Card variant words that turn the following number into an edition code.
# Other words before a number ("mew 151", "lot 3") stay ordinary tokens.
VARIANT_MARKERS: FrozenSet[str] = frozenset({"ex", "gx", "v", "vmax", "vstar"})

_PUNCTUATION = re.compile(r"[^\w\s/-]")
_WHITESPACE = re.compile(r"\s+")

# 199/165, 199-165, sm12-123
_NUMERIC_REFERENCE = re.compile(r"^([a-z]*\d+)([/-])(\d+)$")
# ex4, gx12, vmax20
_ALPHANUMERIC_CODE = re.compile(r"^([a-z]+)(\d+)$")
_DIGITS = re.compile(r"^\d+$")


def normalize(text: Optional[str]) -> str:
    """Normalize text for matching.

    Decomposes accents and drops them, case-folds, turns punctuation into
    spaces (keeping "/" and "-", which carry meaning in reference codes)
    and collapses whitespace.
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    lowered = stripped.casefold()
    return _WHITESPACE.sub(" ", _PUNCTUATION.sub(" ", lowered)).strip()


@dataclass(frozen=True)
class Reference:
    """A mandatory edition identifier and every spelling accepted for it."""

    value: str
    variants: Tuple[str, ...]

    def found_in(self, title: str) -> bool:
        return any(_reference_pattern(variant).search(title) for variant in self.variants)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a relevance check, with the reasoning behind it."""

    accepted: bool
    reason: str
    references: Tuple[str, ...] = ()
    missing_references: Tuple[str, ...] = ()
    tokens: Tuple[str, ...] = ()
    missing_tokens: Tuple[str, ...] = ()

    @property
    def coverage(self) -> float:
        """Share of ordinary tokens present in the title."""
        if not self.tokens:
            return 1.0
        return 1 - len(self.missing_tokens) / len(self.tokens)


class RelevanceMatcher:
    """Keyword and reference-code matcher for listing titles."""

    def __init__(
        self,
        max_missing_ratio: float = MAX_MISSING_RATIO,
        stop_words: FrozenSet[str] = STOP_WORDS,
        variant_markers: FrozenSet[str] = VARIANT_MARKERS,
    ):
        self.max_missing_ratio = max_missing_ratio
        self.stop_words = stop_words
        self.variant_markers = variant_markers

    def matches(self, phrase: str, title: str) -> bool:
        return self.explain(phrase, title).accepted

    def explain(self, phrase: str, title: str) -> MatchResult:
        """Run every relevance rule and report which one decided.

        Args:
            phrase: Watched item search phrase
            title: Listing title

        Returns:
            MatchResult; reason is one of "empty_phrase", "full_phrase",
            "reference_missing", "too_many_missing", "matched"
        """
        norm_phrase = normalize(phrase)
        if not norm_phrase:
            return MatchResult(accepted=True, reason="empty_phrase")

        norm_title = normalize(title)
        if norm_phrase in norm_title:
            return MatchResult(accepted=True, reason="full_phrase")

        tokens = self.tokenize(norm_phrase)
        references, remaining = extract_references(tokens, self.variant_markers)
        reference_values = tuple(ref.value for ref in references)

        missing_refs = tuple(ref.value for ref in references if not ref.found_in(norm_title))
        if missing_refs:
            return MatchResult(
                accepted=False,
                reason="reference_missing",
                references=reference_values,
                missing_references=missing_refs,
                tokens=tuple(remaining),
            )

        missing = tuple(token for token in remaining if not _token_in(token, norm_title))
        too_many_missing = bool(remaining) and len(missing) / len(remaining) > self.max_missing_ratio
        return MatchResult(
            accepted=not too_many_missing,
            reason="too_many_missing" if too_many_missing else "matched",
            references=reference_values,
            tokens=tuple(remaining),
            missing_tokens=missing,
        )

    def tokenize(self, normalized_phrase: str) -> List[str]:
        """Split a normalized phrase, dropping stop words and bare separators."""
        return [
            token
            for token in normalized_phrase.split(" ")
            if token
            and token not in self.stop_words
            and any(ch.isalnum() for ch in token)
        ]


def extract_references(
    tokens: List[str],
    markers: FrozenSet[str] = VARIANT_MARKERS,
) -> Tuple[List[Reference], List[str]]:
    """Separate reference codes from ordinary tokens.

    Recognized forms:
        "199/165", "199-165", "sm12-123": digit pair with an optional prefix
        "ex4", "vmax20": variant marker glued to a number
        "ex 4", "gx 12": variant marker followed by a number

    Any other word next to a number ("mew 151") is an ordinary token.

    Returns:
        (references, remaining ordinary tokens)
    """
    references: List[Reference] = []
    remaining: List[str] = []

    i = 0
    while i < len(tokens):
        token = tokens[i]

        numeric = _NUMERIC_REFERENCE.match(token)
        if numeric:
            left, _, right = numeric.groups()
            references.append(Reference(token, _variants(left, right, ("", " ", "-", "/"))))
            i += 1
            continue

        code = _ALPHANUMERIC_CODE.match(token)
        if code and code.group(1) in markers:
            prefix, number = code.groups()
            references.append(Reference(token, _variants(prefix, number, ("", " ", "-"))))
            i += 1
            continue

        if (
            i + 1 < len(tokens)
            and token in markers
            and _DIGITS.match(tokens[i + 1])
        ):
            number = tokens[i + 1]
            references.append(
                Reference(f"{token} {number}", _variants(token, number, ("", " ", "-")))
            )
            i += 2
            continue

        remaining.append(token)
        i += 1

    return references, remaining


def _variants(left: str, right: str, separators: Tuple[str, ...]) -> Tuple[str, ...]:
    seen: List[str] = []
    for separator in separators:
        variant = f"{left}{separator}{right}"
        if variant not in seen:
            seen.append(variant)
    return tuple(seen)


def _reference_pattern(variant: str) -> "re.Pattern[str]":
    # "199165" must not match inside "1991650"; "ex4" must not match "rex4"
    lead = r"(?<![a-z0-9])" if variant[:1].isalpha() else r"(?<!\d)"
    return re.compile(f"{lead}{re.escape(variant)}(?!\\d)")


def _token_in(token: str, title: str) -> bool:
    if len(token) <= SHORT_TOKEN_LENGTH:
        return re.search(f"(?<!\\w){re.escape(token)}(?!\\w)", title) is not None
    return token in title
