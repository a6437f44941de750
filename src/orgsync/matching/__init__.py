"""Entity resolution -- name normalization, match index and strategy cascade.

Provides normalize() and extract_domain_token() for canonicalizing display
names, MatchIndex for immutable per-run lookup tables, Resolver for the
ordered strategy cascade, and MatchReport for auditing strategy usage.
"""

from src.orgsync.matching.index import MatchIndex
from src.orgsync.matching.normalize import extract_domain_token, normalize
from src.orgsync.matching.report import MatchReport
from src.orgsync.matching.resolver import MatchStrategy, Resolution, Resolver, resolve
from src.orgsync.matching.tables import ACRONYMS, ALIASES

__all__ = [
    "ACRONYMS",
    "ALIASES",
    "MatchIndex",
    "MatchReport",
    "MatchStrategy",
    "Resolution",
    "Resolver",
    "extract_domain_token",
    "normalize",
    "resolve",
]
