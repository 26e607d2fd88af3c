"""
Language hint parsing, ISO alias normalization and the language policy
applied by the inference engine.
"""

import re
from dataclasses import dataclass
from enum import Enum

from . import config
from .types import ModelCategory

# Deprecated or alternate codes mapped to the codes Whisper understands.
LANGUAGE_ALIASES = {
    "iw": "he",
    "in": "id",
    "ji": "yi",
    "jv": "jw",
    "nb": "no",
    "mo": "ro",
    "fil": "tl",
}

_REGION_SPLIT = re.compile(r"[-_]")


def normalize_language(code: str) -> str:
    """Lower-case, drop any region suffix and map aliases ("pt_BR" -> "pt")."""
    code = code.strip().lower()
    if not code:
        return ""
    base = _REGION_SPLIT.split(code, maxsplit=1)[0]
    return LANGUAGE_ALIASES.get(base, base)


def parse_language_hint(
    hint: str | None, default: str = config.DEFAULT_LANGUAGE
) -> list[str]:
    """
    Parse a comma-separated language hint.

    Empty entries are skipped; an absent or empty hint yields [default].
    The first entry is the primary language.
    """
    if hint:
        languages = [normalize_language(part) for part in hint.split(",")]
        languages = [lang for lang in languages if lang]
        if languages:
            return languages
    return [default]


def resolve_category(language: str) -> ModelCategory:
    """Map a language code to the model category that serves it."""
    if normalize_language(language) == "en":
        return ModelCategory.ENGLISH_ONLY
    return ModelCategory.MULTILINGUAL


class PolicyMode(str, Enum):
    AUTO = "auto"
    STRICT = "strict"
    RESTRICTED = "restricted"


@dataclass(frozen=True)
class LanguagePolicy:
    mode: PolicyMode
    hint: str | None = None
    allowed: tuple[str, ...] = ()


def _dedupe(languages) -> tuple[str, ...]:
    return tuple(dict.fromkeys(languages))


def resolve_language_policy(allowed) -> LanguagePolicy:
    """
    Turn an ordered allowed-language list into a decoding policy.

    - no entries: unrestricted auto-detection
    - one entry, or the first two entries equal with nothing else: strict lock
    - otherwise: detection restricted to the allowed set, with the first
      entry as priority hint. A duplicated first entry among three or more
      keeps that language as the hint and restricts to the remaining set.
    """
    allowed = [lang for lang in allowed if lang]
    if not allowed:
        return LanguagePolicy(PolicyMode.AUTO)

    primary = allowed[0]
    if len(allowed) == 1:
        return LanguagePolicy(PolicyMode.STRICT, primary, (primary,))

    duplicate_first = allowed[0] == allowed[1]
    if duplicate_first and len(allowed) == 2:
        return LanguagePolicy(PolicyMode.STRICT, primary, (primary,))

    candidates = _dedupe(allowed[1:] if duplicate_first else allowed)
    if primary not in candidates:
        candidates = (primary,) + candidates
    if len(candidates) == 1:
        return LanguagePolicy(PolicyMode.STRICT, primary, candidates)
    return LanguagePolicy(PolicyMode.RESTRICTED, primary, candidates)
