"""Cache persistence models -- the local copy of Ticketing, CRM and cross-reference data.

Five SQLAlchemy models on CacheBase:
- OrganizationModel: Ticketing System organizations (replaced wholesale each sync)
- TicketModel: Tickets, upserted by external ticket id
- OwnershipAssignmentModel: CRM account ownership resolved to organizations
- TicketLinkModel: Development-tracker issues referencing tickets
- SyncStatusModel: One row per sync type, latest run wins

Organization id is the only identifier other tables refer to. The references
are not declared as foreign keys: tickets use 0 as the "no organization"
sentinel and assignments may be unresolved.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.orgsync.core.database import CacheBase


class OrganizationModel(CacheBase):
    """Organization from the Ticketing System, keyed by its stable integer id."""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    domain_names: Mapped[list] = mapped_column(JSON, default=list)
    crm_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    crm_account_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class TicketModel(CacheBase):
    """Support ticket with product-specific custom fields flattened into columns."""

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    organization_id: Mapped[int] = mapped_column(BigInteger, default=0, index=True)
    subject: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(16), default="normal")
    requester_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    assignee_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    product: Mapped[str | None] = mapped_column(String(200), nullable=True)
    module: Mapped[str | None] = mapped_column(String(200), nullable=True)
    ticket_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    workflow_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    issue_subtype: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_escalated: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class OwnershipAssignmentModel(CacheBase):
    """CSM assignment for one CRM account. Cleared and rewritten on every sync."""

    __tablename__ = "csm_assignments"

    account_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    account_name: Mapped[str] = mapped_column(String(500), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    owner_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    owner_email: Mapped[str | None] = mapped_column(String(300), nullable=True, index=True)
    organization_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    match_strategy: Mapped[str | None] = mapped_column(String(32), nullable=True)
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class TicketLinkModel(CacheBase):
    """Cross-reference from a ticket to a development-tracker issue."""

    __tablename__ = "ticket_links"
    __table_args__ = (
        UniqueConstraint(
            "ticket_id",
            "repo_name",
            "issue_number",
            name="uq_ticket_link_issue",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    issue_number: Mapped[int] = mapped_column(Integer, nullable=False)
    repo_name: Mapped[str] = mapped_column(String(200), nullable=False)
    project_title: Mapped[str] = mapped_column(String(300), default="")
    project_status: Mapped[str] = mapped_column(String(100), default="")
    sprint: Mapped[str | None] = mapped_column(String(100), nullable=True)
    milestone: Mapped[str | None] = mapped_column(String(100), nullable=True)
    release_version: Mapped[str | None] = mapped_column(String(100), nullable=True)
    url: Mapped[str] = mapped_column(String(500), default="")
    issue_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class SyncStatusModel(CacheBase):
    """Latest run per sync type.

    last_success_at survives failed runs so delta syncs always have the
    start time of the most recent clean run.
    """

    __tablename__ = "sync_status"

    sync_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_sync: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
