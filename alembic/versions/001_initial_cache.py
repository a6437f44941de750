"""Initial sync cache tables.

Revision ID: 001_initial_cache
Revises:
Create Date: 2026-10-17

Creates the five cache tables:
- organizations: Ticketing System organizations (wholesale-replaced per sync)
- tickets: Tickets upserted by external id, custom fields flattened
- csm_assignments: CRM account ownership with resolved organization and strategy
- ticket_links: Development-tracker issues referencing tickets
- sync_status: One row per sync type

No foreign key constraints: tickets use organization id 0 as the "none"
sentinel and assignments may be unresolved.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_cache"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _cached_at() -> sa.Column:
    return sa.Column(
        "cached_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── organizations ───────────────────────────────────────────────────

    op.create_table(
        "organizations",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("domain_names", sa.JSON(), nullable=False),
        sa.Column("crm_id", sa.String(255), nullable=True),
        sa.Column("crm_account_name", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        _cached_at(),
    )
    op.create_index("ix_organizations_crm_id", "organizations", ["crm_id"])

    # ── tickets ─────────────────────────────────────────────────────────

    op.create_table(
        "tickets",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("organization_id", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("subject", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("priority", sa.String(16), nullable=False, server_default="normal"),
        sa.Column("requester_id", sa.BigInteger(), nullable=True),
        sa.Column("assignee_id", sa.BigInteger(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("product", sa.String(200), nullable=True),
        sa.Column("module", sa.String(200), nullable=True),
        sa.Column("ticket_type", sa.String(100), nullable=True),
        sa.Column("workflow_status", sa.String(100), nullable=True),
        sa.Column("issue_subtype", sa.String(100), nullable=True),
        sa.Column("is_escalated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        _cached_at(),
    )
    op.create_index("ix_tickets_organization_id", "tickets", ["organization_id"])
    op.create_index("ix_tickets_status", "tickets", ["status"])
    op.create_index("ix_tickets_updated_at", "tickets", ["updated_at"])

    # ── csm_assignments ─────────────────────────────────────────────────

    op.create_table(
        "csm_assignments",
        sa.Column("account_id", sa.String(32), primary_key=True),
        sa.Column("account_name", sa.String(500), nullable=False),
        sa.Column("owner_id", sa.String(32), nullable=True),
        sa.Column("owner_name", sa.String(300), nullable=True),
        sa.Column("owner_email", sa.String(300), nullable=True),
        sa.Column("organization_id", sa.BigInteger(), nullable=True),
        sa.Column("match_strategy", sa.String(32), nullable=True),
        _cached_at(),
    )
    op.create_index("ix_csm_assignments_owner_email", "csm_assignments", ["owner_email"])
    op.create_index("ix_csm_assignments_organization_id", "csm_assignments", ["organization_id"])

    # ── ticket_links ────────────────────────────────────────────────────

    op.create_table(
        "ticket_links",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ticket_id", sa.BigInteger(), nullable=False),
        sa.Column("issue_number", sa.Integer(), nullable=False),
        sa.Column("repo_name", sa.String(200), nullable=False),
        sa.Column("project_title", sa.String(300), nullable=False, server_default=""),
        sa.Column("project_status", sa.String(100), nullable=False, server_default=""),
        sa.Column("sprint", sa.String(100), nullable=True),
        sa.Column("milestone", sa.String(100), nullable=True),
        sa.Column("release_version", sa.String(100), nullable=True),
        sa.Column("url", sa.String(500), nullable=False, server_default=""),
        sa.Column("issue_updated_at", sa.DateTime(timezone=True), nullable=True),
        _cached_at(),
        sa.UniqueConstraint("ticket_id", "repo_name", "issue_number", name="uq_ticket_link_issue"),
    )
    op.create_index("ix_ticket_links_ticket_id", "ticket_links", ["ticket_id"])

    # ── sync_status ─────────────────────────────────────────────────────

    op.create_table(
        "sync_status",
        sa.Column("sync_type", sa.String(32), primary_key=True),
        sa.Column("last_sync", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("record_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("sync_status")
    op.drop_index("ix_ticket_links_ticket_id", table_name="ticket_links")
    op.drop_table("ticket_links")
    op.drop_index("ix_csm_assignments_organization_id", table_name="csm_assignments")
    op.drop_index("ix_csm_assignments_owner_email", table_name="csm_assignments")
    op.drop_table("csm_assignments")
    op.drop_index("ix_tickets_updated_at", table_name="tickets")
    op.drop_index("ix_tickets_status", table_name="tickets")
    op.drop_index("ix_tickets_organization_id", table_name="tickets")
    op.drop_table("tickets")
    op.drop_index("ix_organizations_crm_id", table_name="organizations")
    op.drop_table("organizations")
