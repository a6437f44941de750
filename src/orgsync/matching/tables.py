"""Hand-curated lookup tables for the acronym and alias resolver strategies.

Keys are normalized CRM account names (see normalize()). Acronym values are
full organization names and are normalized again before lookup. Alias values
are tried as a domain token first, then as a normalized name, so an alias
can point at either "troweprice" or "t rowe price".

Add entries here when the match report shows a known account landing in
the unresolved or partial buckets.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

# ── Acronym Expansions ─────────────────────────────────────────────────────

ACRONYMS: Mapping[str, str] = MappingProxyType({
    "fbi": "federal bureau of investigation",
    "irs": "internal revenue service",
    "nasa": "national aeronautics and space administration",
    "dhs": "department of homeland security",
    "dod": "department of defense",
    "doj": "department of justice",
    "doe": "department of energy",
    "hhs": "department of health and human services",
    "va": "department of veterans affairs",
    "gsa": "general services administration",
    "epa": "environmental protection agency",
    "fema": "federal emergency management agency",
    "usda": "united states department of agriculture",
    "noaa": "national oceanic and atmospheric administration",
    "nih": "national institutes of health",
    "cdc": "centers for disease control and prevention",
    "ssa": "social security administration",
    "opm": "office of personnel management",
    "usps": "united states postal service",
    "faa": "federal aviation administration",
})

# ── Alias Corrections ──────────────────────────────────────────────────────

ALIASES: Mapping[str, str] = MappingProxyType({
    "t rowe price": "troweprice",
    "t rowe price associates": "troweprice",
    "pwc": "pricewaterhousecoopers",
    "pricewaterhousecoopers llp": "pricewaterhousecoopers",
    "ey": "ernst & young",
    "ernst and young": "ernst & young",
    "kpmg llp": "kpmg",
    "booz allen": "booz allen hamilton",
    "bah": "booz allen hamilton",
    "saic": "science applications international",
    "gdit": "general dynamics information technology",
    "jhu": "johns hopkins university",
    "jhuapl": "johns hopkins applied physics laboratory",
    "mit": "massachusetts institute of technology",
    "ibm": "international business machines",
})
