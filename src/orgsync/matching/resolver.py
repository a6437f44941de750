"""Resolver -- maps a CRM account onto a cached organization.

Runs an explicit, ordered cascade of strategies against a MatchIndex and
returns the first hit together with the strategy that produced it. The
order runs from highest to lowest confidence:

    external_id > exact > acronym > alias > normalized > domain
        > first_word > keyword > partial > none

Each strategy is a small method so the cascade can be inspected and tested
one step at a time.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import Enum
from typing import NamedTuple

from src.orgsync.cache.schemas import OrganizationRecord
from src.orgsync.matching.index import (
    EXTERNAL_ID_PREFIX_LENGTH,
    FIRST_WORD_MIN_LENGTH,
    KEYWORD_MIN_LENGTH,
    PARTIAL_MIN_LENGTH,
    MatchIndex,
)
from src.orgsync.matching.normalize import extract_domain_token, normalize, tokens
from src.orgsync.matching.tables import ACRONYMS, ALIASES


class MatchStrategy(str, Enum):
    """Resolver strategies, in cascade order."""

    EXTERNAL_ID = "external_id"
    EXACT = "exact"
    ACRONYM = "acronym"
    ALIAS = "alias"
    NORMALIZED = "normalized"
    DOMAIN = "domain"
    FIRST_WORD = "first_word"
    KEYWORD = "keyword"
    PARTIAL = "partial"
    NONE = "none"


class Resolution(NamedTuple):
    organization: OrganizationRecord | None
    strategy: MatchStrategy

    @property
    def resolved(self) -> bool:
        return self.organization is not None


class _Account(NamedTuple):
    """Per-account keys derived once and shared by every strategy."""

    account_id: str
    raw: str
    key: str


_COMPACT_DROP = str.maketrans("", "", ". \t\n\r-")


class Resolver:
    """Resolve CRM accounts against one MatchIndex snapshot.

    Args:
        index: Index built from the current organization set.
        aliases: Normalized account name -> domain token or organization name.
        acronyms: Normalized account name -> full organization name.
    """

    def __init__(
        self,
        index: MatchIndex,
        *,
        aliases: Mapping[str, str] = ALIASES,
        acronyms: Mapping[str, str] = ACRONYMS,
    ) -> None:
        self._index = index
        self._aliases = aliases
        self._acronyms = acronyms
        self._cascade: tuple[
            tuple[MatchStrategy, Callable[[_Account], OrganizationRecord | None]], ...
        ] = (
            (MatchStrategy.EXTERNAL_ID, self._by_external_id),
            (MatchStrategy.EXACT, self._by_exact),
            (MatchStrategy.ACRONYM, self._by_acronym),
            (MatchStrategy.ALIAS, self._by_alias),
            (MatchStrategy.NORMALIZED, self._by_normalized),
            (MatchStrategy.DOMAIN, self._by_domain),
            (MatchStrategy.FIRST_WORD, self._by_first_word),
            (MatchStrategy.KEYWORD, self._by_keyword),
            (MatchStrategy.PARTIAL, self._by_partial),
        )

    @property
    def strategies(self) -> list[MatchStrategy]:
        """Strategies in the order they are tried."""
        return [strategy for strategy, _ in self._cascade]

    def resolve(self, account_id: str | None, account_name: str | None) -> Resolution:
        """Return the first organization any strategy finds, and which strategy found it.

        An empty account name resolves to none without consulting the index.
        A bare-domain account name ("accenture.com") is keyed by its domain
        label so the remaining strategies see "accenture".
        """
        raw = (account_name or "").strip()
        if not raw:
            return Resolution(None, MatchStrategy.NONE)

        account = _Account(
            account_id=(account_id or "").strip(),
            raw=raw.lower(),
            key=extract_domain_token(raw) or normalize(raw),
        )
        for strategy, lookup in self._cascade:
            organization = lookup(account)
            if organization is not None:
                return Resolution(organization, strategy)
        return Resolution(None, MatchStrategy.NONE)

    # ── Strategies (private) ────────────────────────────────────────────

    def _by_external_id(self, account: _Account) -> OrganizationRecord | None:
        if not account.account_id:
            return None
        table = self._index.external_id
        found = table.get(account.account_id)
        if found is None and len(account.account_id) >= EXTERNAL_ID_PREFIX_LENGTH:
            found = table.get(account.account_id[:EXTERNAL_ID_PREFIX_LENGTH])
        return found

    def _by_exact(self, account: _Account) -> OrganizationRecord | None:
        return self._index.exact.get(account.raw)

    def _by_acronym(self, account: _Account) -> OrganizationRecord | None:
        expansion = self._acronyms.get(account.key)
        if not expansion:
            return None
        return self._index.normalized.get(normalize(expansion))

    def _by_alias(self, account: _Account) -> OrganizationRecord | None:
        target = self._aliases.get(account.key)
        if not target:
            return None
        found = self._index.domain.get(target.strip().lower())
        if found is None:
            found = self._index.normalized.get(normalize(target))
        return found

    def _by_normalized(self, account: _Account) -> OrganizationRecord | None:
        if not account.key:
            return None
        return self._index.normalized.get(account.key)

    def _by_domain(self, account: _Account) -> OrganizationRecord | None:
        if not account.key:
            return None
        found = self._index.domain.get(account.key)
        if found is None:
            compact = account.key.translate(_COMPACT_DROP)
            if len(compact) >= PARTIAL_MIN_LENGTH:
                found = self._index.domain.get(compact)
        return found

    def _by_first_word(self, account: _Account) -> OrganizationRecord | None:
        words = tokens(account.key)
        if not words or len(words[0]) < FIRST_WORD_MIN_LENGTH:
            return None
        return self._index.first_word.get(words[0])

    def _by_keyword(self, account: _Account) -> OrganizationRecord | None:
        for word in tokens(account.key):
            if len(word) < KEYWORD_MIN_LENGTH:
                continue
            found = self._index.keyword.get(word)
            if found is not None:
                return found
        return None

    def _by_partial(self, account: _Account) -> OrganizationRecord | None:
        # O(organizations) per account; lowest confidence, reported separately.
        if len(account.key) < PARTIAL_MIN_LENGTH:
            return None
        for candidate, organization in self._index.partial_candidates:
            if candidate in account.key or account.key in candidate:
                return organization
        return None


def resolve(
    account_id: str | None,
    account_name: str | None,
    index: MatchIndex,
    aliases: Mapping[str, str] = ALIASES,
    acronyms: Mapping[str, str] = ACRONYMS,
) -> Resolution:
    """Resolve a single account. Prefer Resolver when resolving many."""
    return Resolver(index, aliases=aliases, acronyms=acronyms).resolve(account_id, account_name)
