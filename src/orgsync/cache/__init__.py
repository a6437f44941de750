"""Local sync cache -- persistence models, record schemas and the Cache Store.

Provides SQLAlchemy models for organizations, tickets, CSM assignments,
ticket links and per-type sync status, Pydantic record schemas shared with
the external clients, and CacheStore for idempotent bulk writes.
"""

from src.orgsync.cache.repository import CacheStore
from src.orgsync.cache.schemas import (
    CRMAccount,
    OrganizationRecord,
    OwnershipAssignmentRecord,
    SyncOutcome,
    SyncStatusRead,
    SyncType,
    TicketCustomFields,
    TicketLinkRecord,
    TicketPriority,
    TicketRecord,
    TicketStatus,
)

__all__ = [
    "CRMAccount",
    "CacheStore",
    "OrganizationRecord",
    "OwnershipAssignmentRecord",
    "SyncOutcome",
    "SyncStatusRead",
    "SyncType",
    "TicketCustomFields",
    "TicketLinkRecord",
    "TicketPriority",
    "TicketRecord",
    "TicketStatus",
]
