"""Bone-name normalization and token lookups.

Two forms of a name are used:

- ``normalize_name``: separators ('.', '_', ' ', '-') dropped, case-folded.
  ``"Upper_Leg.L"`` and ``"UpperLeg_L"`` both become ``"upperlegl"``.
- ``name_tokens``: separators and camelCase boundaries split into lower-case
  tokens, ``"LeftUpperLeg"`` → ``["left", "upper", "leg"]``.  Needed for
  laterality, since a bare ``l``/``r`` is only meaningful as its own token.
"""

import re
from functools import lru_cache
from typing import Optional

from clothfit.skeleton.vocabulary import MatchVocabulary

_SEPARATORS = re.compile(r"[._ \-]+")
_CAMEL_TOKENS = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


@lru_cache(maxsize=4096)
def normalize_name(name: str) -> str:
    return _SEPARATORS.sub("", name).casefold()


@lru_cache(maxsize=4096)
def name_tokens(name: str) -> tuple[str, ...]:
    tokens = []
    for segment in _SEPARATORS.split(name):
        tokens.extend(t.lower() for t in _CAMEL_TOKENS.findall(segment))
    return tuple(tokens)


def names_equivalent(a: str, b: str) -> bool:
    """True when two names differ only by separators and case."""
    return normalize_name(a) == normalize_name(b)


def laterality(name: str) -> Optional[str]:
    """'l', 'r' or None."""
    norm = normalize_name(name)
    tokens = name_tokens(name)
    if "left" in norm or "l" in tokens:
        return "l"
    if "right" in norm or "r" in tokens:
        return "r"
    return None


def body_part(name: str, vocab: MatchVocabulary) -> Optional[str]:
    """First vocabulary body part found in the normalized name."""
    norm = normalize_name(name)
    for part in vocab.body_parts:
        if part in norm:
            return part
    return None


def qualifiers(name: str, vocab: MatchVocabulary) -> frozenset[str]:
    norm = normalize_name(name)
    return frozenset(q for q in vocab.qualifiers if q in norm)


def opposite_qualifiers(a: frozenset[str], b: frozenset[str]) -> bool:
    """One side says 'upper' and the other 'lower' (or vice versa) with no overlap."""
    return bool(a) and bool(b) and not (a & b)


def alias_groups(name: str, vocab: MatchVocabulary) -> frozenset[int]:
    """Indices of alias groups with a member contained in the name."""
    norm = normalize_name(name)
    return frozenset(
        i for i, group in enumerate(vocab.aliases)
        if any(member in norm for member in group)
    )


def extremity_families(name: str, vocab: MatchVocabulary) -> frozenset[int]:
    """Indices of extremity families (foot/toe, hand/finger) named in the name."""
    norm = normalize_name(name)
    return frozenset(
        i for i, family in enumerate(vocab.extremity_families)
        if any(kw in norm for kw in family)
    )


def contains_either(a: str, b: str, min_length: int = 1) -> bool:
    """Normalized containment in either direction, ignoring too-short names."""
    na, nb = normalize_name(a), normalize_name(b)
    if min(len(na), len(nb)) < min_length:
        return False
    return na in nb or nb in na


def is_important(name: str, vocab: MatchVocabulary) -> bool:
    """Terminal joints (hands, feet, toes, fingers) and the critical names."""
    norm = normalize_name(name)
    if any(kw in norm for kw in vocab.important_keywords):
        return True
    return any(normalize_name(c) == norm for c in vocab.critical_names)


def has_renderer_keyword(name: str, vocab: MatchVocabulary) -> bool:
    lower = name.lower()
    return any(kw in lower for kw in vocab.renderer_keywords)


def is_decoration_bone(name: str, vocab: MatchVocabulary) -> bool:
    """Accessory/ornament bones (ribbons, belts, chains, ...)."""
    lower = name.lower()
    return any(kw in lower for kw in vocab.decoration_keywords)
