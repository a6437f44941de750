"""Match Index -- immutable lookup tables built from cached organizations.

A MatchIndex is a snapshot: it is built once per ownership sync from the
full organization set and never mutated afterwards. Every table maps a
derived key to an OrganizationRecord, and the first organization to claim a
key keeps it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

import structlog

from src.orgsync.cache.schemas import OrganizationRecord
from src.orgsync.matching.normalize import extract_domain_token, normalize, tokens

logger = structlog.get_logger(__name__)

# Minimum lengths below which a key never enters the weaker tables.
FIRST_WORD_MIN_LENGTH = 4
KEYWORD_MIN_LENGTH = 5
PARTIAL_MIN_LENGTH = 4
# Short-form external ids are the first 15 characters of the long form.
EXTERNAL_ID_PREFIX_LENGTH = 15


@dataclass(frozen=True)
class MatchIndex:
    """Six read-only lookup tables plus the candidate list for partial matching.

    Attributes:
        exact: Lower-cased raw name and lower-cased cached CRM name.
        normalized: normalize(name).
        domain: Domain token of the name, then of each associated domain.
        first_word: First token of the normalized name (>= 4 chars).
        keyword: Every normalized token of >= 5 chars.
        external_id: CRM id and its 15-character prefix.
        partial_candidates: (normalized exact key, organization) pairs of
            >= 4 chars, in insertion order, for the contains scan.
    """

    exact: Mapping[str, OrganizationRecord]
    normalized: Mapping[str, OrganizationRecord]
    domain: Mapping[str, OrganizationRecord]
    first_word: Mapping[str, OrganizationRecord]
    keyword: Mapping[str, OrganizationRecord]
    external_id: Mapping[str, OrganizationRecord]
    partial_candidates: tuple[tuple[str, OrganizationRecord], ...]
    organization_count: int = 0

    @classmethod
    def build(cls, organizations: Iterable[OrganizationRecord]) -> MatchIndex:
        """Build a fresh index. Organizations without a name are skipped."""
        exact: dict[str, OrganizationRecord] = {}
        normalized: dict[str, OrganizationRecord] = {}
        domain: dict[str, OrganizationRecord] = {}
        first_word: dict[str, OrganizationRecord] = {}
        keyword: dict[str, OrganizationRecord] = {}
        external_id: dict[str, OrganizationRecord] = {}
        count = 0
        skipped = 0

        for org in organizations:
            name = (org.name or "").strip()
            if not name:
                skipped += 1
                continue
            count += 1

            exact.setdefault(name.lower(), org)
            if org.crm_account_name and org.crm_account_name.strip():
                exact.setdefault(org.crm_account_name.strip().lower(), org)

            norm = normalize(name)
            if norm:
                normalized.setdefault(norm, org)

            for candidate in (name, *org.domain_names):
                token = extract_domain_token(candidate)
                if token:
                    domain.setdefault(token, org)

            words = tokens(norm)
            if words and len(words[0]) >= FIRST_WORD_MIN_LENGTH:
                first_word.setdefault(words[0], org)
            for word in words:
                if len(word) >= KEYWORD_MIN_LENGTH:
                    keyword.setdefault(word, org)

            if org.crm_id:
                external_id.setdefault(org.crm_id, org)
                if len(org.crm_id) >= EXTERNAL_ID_PREFIX_LENGTH:
                    external_id.setdefault(org.crm_id[:EXTERNAL_ID_PREFIX_LENGTH], org)

        partial: list[tuple[str, OrganizationRecord]] = []
        for key, org in exact.items():
            norm_key = normalize(key)
            if len(norm_key) >= PARTIAL_MIN_LENGTH:
                partial.append((norm_key, org))

        logger.debug(
            "matching.index_built",
            organizations=count,
            skipped_unnamed=skipped,
            exact=len(exact),
            normalized=len(normalized),
            domain=len(domain),
            first_word=len(first_word),
            keyword=len(keyword),
            external_id=len(external_id),
        )

        return cls(
            exact=MappingProxyType(exact),
            normalized=MappingProxyType(normalized),
            domain=MappingProxyType(domain),
            first_word=MappingProxyType(first_word),
            keyword=MappingProxyType(keyword),
            external_id=MappingProxyType(external_id),
            partial_candidates=tuple(partial),
            organization_count=count,
        )
