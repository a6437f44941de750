"""Name canonicalization shared by the match index and the resolver.

Pure functions, no state. Both sides of every comparison go through the
same normalize() so that "ACME, Inc." and "Acme Inc" produce the same key.
"""

from __future__ import annotations

import re
import unicodedata

LEGAL_SUFFIXES: tuple[str, ...] = (
    "inc",
    "llc",
    "corp",
    "corporation",
    "company",
    "co",
    "ltd",
    "limited",
    "group",
    "holdings",
    "platforms",
)

DOMAIN_TLDS: tuple[str, ...] = ("com", "org", "net", "io", "co", "edu", "gov")

_PUNCTUATION_RE = re.compile(r"[.,'\"]")
_WHITESPACE_RE = re.compile(r"\s+")
_SUFFIX_RE = re.compile(r"\s+(?:" + "|".join(LEGAL_SUFFIXES) + r")\.?$", re.IGNORECASE)
_DOMAIN_RE = re.compile(r"^([a-z0-9-]+)\.(?:" + "|".join(DOMAIN_TLDS) + r")$")


def strip_accents(value: str) -> str:
    """Decompose to NFD and drop combining marks ("Société" -> "Societe")."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(name: str | None) -> str:
    """Canonicalize a display name for fuzzy comparison.

    Lower-cases, strips diacritics and the characters ``. , ' "``, collapses
    whitespace and removes trailing legal-entity suffixes. Suffixes are
    stripped until none remain ("Acme Co Inc" -> "acme"), which keeps
    normalize(normalize(x)) == normalize(x). A lone suffix word is a name,
    not a suffix, and is kept.

    Args:
        name: Raw display name. None and whitespace-only input yield "".

    Returns:
        The normalized name.
    """
    if not name:
        return ""

    value = strip_accents(name.lower())
    value = _PUNCTUATION_RE.sub("", value)
    value = _WHITESPACE_RE.sub(" ", value).strip()

    while True:
        stripped = _SUFFIX_RE.sub("", value).strip()
        if stripped == value:
            return value
        value = stripped


def extract_domain_token(name: str | None) -> str | None:
    """Return ``label`` when name looks like ``label.tld``, otherwise None.

    Some CRM accounts are named after a bare domain ("accenture.com").

    >>> extract_domain_token("Accenture.com")
    'accenture'
    >>> extract_domain_token("Accenture Federal") is None
    True
    """
    if not name:
        return None
    match = _DOMAIN_RE.match(name.strip().lower())
    return match.group(1) if match else None


def tokens(normalized_name: str) -> list[str]:
    """Split an already-normalized name on single spaces."""
    return normalized_name.split(" ") if normalized_name else []
