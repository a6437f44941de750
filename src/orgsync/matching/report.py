"""Per-run match report for auditing resolver quality.

Operators read the strategy distribution to spot drift: a rising share of
partial matches or unresolved accounts means the alias and acronym tables
need attention. Partial matches are listed individually because the
contains scan is the most error-prone strategy.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any

from src.orgsync.cache.schemas import OrganizationRecord
from src.orgsync.matching.resolver import MatchStrategy, Resolution


@dataclass
class MatchReport:
    """Accumulates resolutions over one ownership sync."""

    strategy_counts: Counter = field(default_factory=Counter)
    partial_matches: list[dict[str, Any]] = field(default_factory=list)
    unresolved_accounts: list[str] = field(default_factory=list)
    _accounts_by_org: dict[int, list[str]] = field(
        default_factory=lambda: defaultdict(list), init=False, repr=False
    )

    def add(self, account_name: str, resolution: Resolution) -> None:
        self.strategy_counts[resolution.strategy.value] += 1
        organization = resolution.organization
        if organization is None:
            self.unresolved_accounts.append(account_name)
            return

        self._accounts_by_org[organization.id].append(account_name)
        if resolution.strategy == MatchStrategy.PARTIAL:
            self.partial_matches.append(_describe(account_name, organization))

    @property
    def total(self) -> int:
        return sum(self.strategy_counts.values())

    @property
    def resolved(self) -> int:
        return self.total - self.strategy_counts[MatchStrategy.NONE.value]

    @property
    def unresolved(self) -> int:
        return self.strategy_counts[MatchStrategy.NONE.value]

    @property
    def duplicate_organizations(self) -> dict[int, list[str]]:
        """Organizations claimed by more than one CRM account."""
        return {
            org_id: names
            for org_id, names in self._accounts_by_org.items()
            if len(names) > 1
        }

    def as_dict(self) -> dict[str, Any]:
        """Summary suitable for structured logging and the status endpoint."""
        return {
            "total": self.total,
            "resolved": self.resolved,
            "unresolved": self.unresolved,
            "strategies": {
                strategy.value: self.strategy_counts[strategy.value]
                for strategy in MatchStrategy
            },
            "partial_matches": list(self.partial_matches),
            "duplicate_organizations": {
                str(org_id): names for org_id, names in self.duplicate_organizations.items()
            },
        }


def _describe(account_name: str, organization: OrganizationRecord) -> dict[str, Any]:
    return {
        "account_name": account_name,
        "organization_id": organization.id,
        "organization_name": organization.name,
    }
