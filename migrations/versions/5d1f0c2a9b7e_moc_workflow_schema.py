"""moc_workflow_schema

Creates the MOC workflow schema:
  - roles, departments          reference lookups read by the engine
  - approval_levels             approval chain template
  - moc_requests, moc_approvers change records and their approval slots
  - dmoc_requests               departmental MOCs
  - control_number_counters     per-(prefix, year) sequence rows
  - activity_logs               append-only action trail

Tables are created conditionally (IF NOT EXISTS semantics) so the revision can
run against a development database that already received them via
db.create_all().

Revision ID: 5d1f0c2a9b7e
Revises:
Create Date: 2026-03-02 09:12:44.518203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5d1f0c2a9b7e'
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by", sa.String(length=150), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Lookups ───────────────────────────────────────────────────────────
    if "roles" not in existing:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=60), nullable=False,
                      comment="Stable identifier, e.g. DepartmentManager"),
            sa.Column("name", sa.String(length=150), nullable=False, server_default=""),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("key"),
        )

    if "departments" not in existing:
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    # ── Approval chain template ───────────────────────────────────────────
    if "approval_levels" not in existing:
        op.create_table(
            "approval_levels",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("order", sa.Integer(), nullable=False, server_default="1",
                      comment="Position in the chain; not unique, not contiguous"),
            sa.Column("role_key", sa.String(length=60), nullable=False,
                      comment="Roles.key that must approve at this level"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_approval_levels_active_order", "approval_levels",
            ["is_active", "order", "id"],
        )

    # ── MOC requests ──────────────────────────────────────────────────────
    if "moc_requests" not in existing:
        op.create_table(
            "moc_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("control_number", sa.String(length=30), nullable=True,
                      comment="{PREFIX}-{YEAR}-{SEQ:04d}"),
            sa.Column("request_type", sa.String(length=20), nullable=False,
                      comment="standard_emoc | bypass_emoc | omoc | dmoc"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("originator", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("units_affected", sa.String(length=500), nullable=False, server_default=""),
            sa.Column("equipment_tag", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("scope_description", sa.Text(), nullable=False, server_default=""),
            sa.Column("risk_tool_used", sa.String(length=100), nullable=True),
            sa.Column("risk_level", sa.String(length=10), nullable=True,
                      comment="green | yellow | red"),
            sa.Column("is_temporary", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("target_implementation_date", sa.Date(), nullable=False),
            sa.Column("planned_restoration_date", sa.Date(), nullable=True),
            sa.Column("bypass_duration_days", sa.Integer(), nullable=True),
            sa.Column("is_bypass_emergency", sa.Boolean(), nullable=True),
            sa.Column("bypass_type", sa.String(length=100), nullable=True),
            sa.Column("current_stage", sa.String(length=30), nullable=False,
                      server_default="initiation"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("marked_inactive_at", sa.DateTime(timezone=True), nullable=True),
            *_audit_columns(),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("control_number"),
        )
        op.create_index("ix_moc_requests_department_id", "moc_requests", ["department_id"])
        op.create_index("ix_moc_requests_type_status", "moc_requests", ["request_type", "status"])
        op.create_index("ix_moc_requests_stage", "moc_requests", ["current_stage"])

    if "moc_approvers" not in existing:
        op.create_table(
            "moc_approvers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("moc_request_id", sa.Integer(), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False,
                      comment="1-based position in the chain"),
            sa.Column("role_key", sa.String(length=60), nullable=False),
            sa.Column("approval_level_id", sa.Integer(), nullable=True),
            sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_approved", sa.Boolean(), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=150), nullable=True),
            sa.Column("completed_by_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["moc_request_id"], ["moc_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approval_level_id"], ["approval_levels.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("moc_request_id", "sequence", name="uq_moc_approver_sequence"),
        )
        op.create_index("ix_moc_approvers_moc_request_id", "moc_approvers", ["moc_request_id"])
        op.create_index("ix_moc_approvers_request_role", "moc_approvers", ["moc_request_id", "role_key"])

    # ── DMOC requests ─────────────────────────────────────────────────────
    if "dmoc_requests" not in existing:
        op.create_table(
            "dmoc_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("dmoc_number", sa.String(length=30), nullable=True,
                      comment="DMOC-YYYY-NNNN, assigned on submit"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("change_originator_user_id", sa.String(length=64), nullable=True),
            sa.Column("change_originator_name", sa.String(length=150), nullable=False),
            sa.Column("originator_position", sa.String(length=150), nullable=True),
            sa.Column("area_or_department_id", sa.Integer(), nullable=True),
            sa.Column("area_or_department_name", sa.String(length=200), nullable=True,
                      comment="Snapshot of Department.name"),
            sa.Column("nature_of_change", sa.String(length=20), nullable=False,
                      server_default="permanent"),
            sa.Column("target_implementation_date", sa.Date(), nullable=True),
            sa.Column("planned_end_date", sa.Date(), nullable=True),
            sa.Column("description_of_change", sa.Text(), nullable=False),
            sa.Column("reason_for_change", sa.Text(), nullable=False),
            sa.Column("affected_equipment", sa.Text(), nullable=True),
            sa.Column("attachments_or_reference_links", sa.Text(), nullable=True),
            sa.Column("additional_remarks", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            *_audit_columns(),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["area_or_department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("dmoc_number"),
        )
        op.create_index(
            "ix_dmoc_requests_change_originator_user_id", "dmoc_requests",
            ["change_originator_user_id"],
        )
        op.create_index("ix_dmoc_requests_status_created", "dmoc_requests", ["status", "created_at"])

    # ── Control-number counters ───────────────────────────────────────────
    if "control_number_counters" not in existing:
        op.create_table(
            "control_number_counters",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("prefix", sa.String(length=10), nullable=False),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("prefix", "year", name="uq_control_number_prefix_year"),
        )

    # ── Activity log ──────────────────────────────────────────────────────
    if "activity_logs" not in existing:
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False,
                      comment="moc_request | dmoc_request | approval_level"),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=40), nullable=False),
            sa.Column("actor_id", sa.String(length=64), nullable=True),
            sa.Column("actor_name", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_activity_entity", "activity_logs", ["entity_type", "entity_id"])
        op.create_index("idx_activity_actor", "activity_logs", ["actor_id"])
        op.create_index("idx_activity_ts", "activity_logs", ["timestamp"])


def downgrade():
    for table in (
        "activity_logs",
        "control_number_counters",
        "dmoc_requests",
        "moc_approvers",
        "moc_requests",
        "approval_levels",
        "departments",
        "roles",
    ):
        op.drop_table(table)
