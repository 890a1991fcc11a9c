"""Initial schema: orgs, users, memberships, plans, incidents, audit log

Revision ID: 4c1e8a2d7b90
Revises:
Create Date: 2026-10-19 09:12:41.207315

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '4c1e8a2d7b90'
down_revision = None
branch_labels = None
depends_on = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade():
    op.create_table(
        "orgs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=True),
        sa.Column("tier", sa.String(length=20), nullable=False, server_default="free"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("slug", name="uq_orgs_slug"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    # Case-insensitive uniqueness on email
    op.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_users_email_lower ON users ((lower(email)));")

    op.create_table(
        "org_memberships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="viewer"),
        sa.Column("invited_by", sa.Integer(), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["org_id"], ["orgs.id"], name="fk_org_memberships_org", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_org_memberships_user", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["invited_by"], ["users.id"], name="fk_org_memberships_invited_by", ondelete="SET NULL"),
        sa.CheckConstraint("role IN ('admin','editor','viewer')", name="ck_org_memberships_role_valid"),
        sa.UniqueConstraint("org_id", "user_id", name="uq_org_memberships_org_user"),
    )
    op.create_index("ix_org_memberships_org_id", "org_memberships", ["org_id"])
    op.create_index("ix_org_memberships_user_id", "org_memberships", ["user_id"])

    op.create_table(
        "emergency_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("version", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("content", _json(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["org_id"], ["orgs.id"], name="fk_emergency_plans_org", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], name="fk_emergency_plans_created_by", ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('draft','review','active','archived')",
            name="ck_emergency_plans_status_valid",
        ),
    )
    op.create_index("ix_emergency_plans_org_id", "emergency_plans", ["org_id"])
    op.create_index("ix_emergency_plans_org_status", "emergency_plans", ["org_id", "status"])
    op.create_index("ix_emergency_plans_created_at", "emergency_plans", ["created_at"])

    op.create_table(
        "incidents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("opened_by", sa.Integer(), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["org_id"], ["orgs.id"], name="fk_incidents_org", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["plan_id"], ["emergency_plans.id"], name="fk_incidents_plan", ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["opened_by"], ["users.id"], name="fk_incidents_opened_by", ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('active','monitoring','resolved')",
            name="ck_incidents_status_valid",
        ),
    )
    op.create_index("ix_incidents_org_id", "incidents", ["org_id"])
    op.create_index("ix_incidents_plan_id", "incidents", ["plan_id"])
    op.create_index("ix_incidents_org_status", "incidents", ["org_id", "status"])
    op.create_index("ix_incidents_activated_at", "incidents", ["activated_at"])

    op.create_table(
        "incident_updates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("incident_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("update_type", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("photo_url", sa.String(length=2048), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["incident_id"], ["incidents.id"], name="fk_incident_updates_incident", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_incident_updates_user", ondelete="SET NULL"),
        sa.CheckConstraint(
            "update_type IN ('status','action','resource','photo','note')",
            name="ck_incident_updates_type_valid",
        ),
    )
    op.create_index("ix_incident_updates_incident_created", "incident_updates", ["incident_id", "created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("details", _json(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["orgs.id"], name="fk_audit_logs_org", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_audit_logs_user", ondelete="SET NULL"),
    )
    op.create_index("ix_audit_logs_org_id", "audit_logs", ["org_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade():
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_org_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_incident_updates_incident_created", table_name="incident_updates")
    op.drop_table("incident_updates")

    op.drop_index("ix_incidents_activated_at", table_name="incidents")
    op.drop_index("ix_incidents_org_status", table_name="incidents")
    op.drop_index("ix_incidents_plan_id", table_name="incidents")
    op.drop_index("ix_incidents_org_id", table_name="incidents")
    op.drop_table("incidents")

    op.drop_index("ix_emergency_plans_created_at", table_name="emergency_plans")
    op.drop_index("ix_emergency_plans_org_status", table_name="emergency_plans")
    op.drop_index("ix_emergency_plans_org_id", table_name="emergency_plans")
    op.drop_table("emergency_plans")

    op.drop_index("ix_org_memberships_user_id", table_name="org_memberships")
    op.drop_index("ix_org_memberships_org_id", table_name="org_memberships")
    op.drop_table("org_memberships")

    op.execute("DROP INDEX IF EXISTS ux_users_email_lower;")
    op.drop_table("users")
    op.drop_table("orgs")
