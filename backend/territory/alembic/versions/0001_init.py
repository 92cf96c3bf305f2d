"""init schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

_EXACTLY_ONE_PARTY = "(agent_id IS NULL) <> (team_id IS NULL)"


def upgrade():
    op.create_table(
        "zones",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("boundary_json", sa.Text(), nullable=True),
        sa.Column("zone_type", sa.String(length=10), nullable=False, server_default="MAP"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
        sa.Column("assigned_agent_id", sa.Integer(), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name", name="uq_zones_name"),
        sa.CheckConstraint("assigned_agent_id IS NULL OR team_id IS NULL", name="ck_zones_single_party"),
    )
    op.create_index("ix_zones_status", "zones", ["status"])
    op.create_index("ix_zones_assigned_agent_id", "zones", ["assigned_agent_id"])
    op.create_index("ix_zones_team_id", "zones", ["team_id"])
    op.create_index("ix_zones_created_by_id", "zones", ["created_by_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="INACTIVE"),
        sa.Column("assignment_status", sa.String(length=20), nullable=False, server_default="UNASSIGNED"),
        sa.Column("primary_zone_id", sa.Integer(), sa.ForeignKey("zones.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_role_status", "users", ["role", "status"])
    op.create_index("ix_users_created_by_id", "users", ["created_by_id"])

    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="INACTIVE"),
        sa.Column("assignment_status", sa.String(length=20), nullable=False, server_default="UNASSIGNED"),
        sa.Column("leader_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_teams_status", "teams", ["status"])
    op.create_index("ix_teams_assignment_status", "teams", ["assignment_status"])
    op.create_index("ix_teams_leader_id", "teams", ["leader_id"])
    op.create_index("ix_teams_created_by_id", "teams", ["created_by_id"])

    op.create_table(
        "agent_team_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("effective_from", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
        sa.Column("assigned_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("agent_id", "team_id", name="uq_agent_team_assignments_agent_team"),
    )
    op.create_index("ix_agent_team_assignments_agent_id", "agent_team_assignments", ["agent_id"])
    op.create_index("ix_agent_team_assignments_team_id", "agent_team_assignments", ["team_id"])

    op.create_table(
        "agent_zone_links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("agent_id", "zone_id", name="uq_agent_zone_links_agent_zone"),
    )
    op.create_index("ix_agent_zone_links_agent_id", "agent_zone_links", ["agent_id"])
    op.create_index("ix_agent_zone_links_zone_id", "agent_zone_links", ["zone_id"])

    op.create_table(
        "zone_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("effective_from", sa.DateTime(), nullable=False),
        sa.Column("effective_to", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
        sa.Column("assigned_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(_EXACTLY_ONE_PARTY, name="ck_zone_assignments_single_party"),
    )
    op.create_index("ix_zone_assignments_zone_id", "zone_assignments", ["zone_id"])
    op.create_index("ix_zone_assignments_agent_id", "zone_assignments", ["agent_id"])
    op.create_index("ix_zone_assignments_team_id", "zone_assignments", ["team_id"])
    op.create_index("ix_zone_assignments_zone_effective_to", "zone_assignments", ["zone_id", "effective_to"])
    op.create_index("ix_zone_assignments_agent_status", "zone_assignments", ["agent_id", "status"])
    op.create_index("ix_zone_assignments_team_status", "zone_assignments", ["team_id", "status"])

    op.create_table(
        "scheduled_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("scheduled_date", sa.DateTime(), nullable=False),
        sa.Column("effective_from", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("assigned_by_id", sa.Integer(), nullable=True),
        sa.Column("notification_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("activated_assignment_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(_EXACTLY_ONE_PARTY, name="ck_scheduled_assignments_single_party"),
    )
    op.create_index("ix_scheduled_assignments_zone_id", "scheduled_assignments", ["zone_id"])
    op.create_index("ix_scheduled_assignments_agent_id", "scheduled_assignments", ["agent_id"])
    op.create_index("ix_scheduled_assignments_team_id", "scheduled_assignments", ["team_id"])
    op.create_index("ix_scheduled_assignments_scheduled_date", "scheduled_assignments", ["scheduled_date"])
    op.create_index("ix_scheduled_assignments_status", "scheduled_assignments", ["status"])
    op.create_index("ix_scheduled_assignments_date_status", "scheduled_assignments", ["scheduled_date", "status"])

    op.create_table(
        "residents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id", ondelete="CASCADE"), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("house_number", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="not-visited"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_residents_zone_id", "residents", ["zone_id"])
    op.create_index("ix_residents_zone_status", "residents", ["zone_id", "status"])

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id", ondelete="CASCADE"), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_properties_zone_id", "properties", ["zone_id"])

    op.create_table(
        "leads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_leads_zone_id", "leads", ["zone_id"])

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=True),
        sa.Column("activity_type", sa.String(length=40), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_activities_zone_id", "activities", ["zone_id"])

    op.create_table(
        "routes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_routes_zone_id", "routes", ["zone_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=80), nullable=False),
        sa.Column("entity_id", sa.String(length=80), nullable=False),
        sa.Column("before_json", sa.Text(), nullable=True),
        sa.Column("after_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_events_action", "audit_events", ["action"])


def downgrade():
    op.drop_table("audit_events")
    op.drop_table("routes")
    op.drop_table("activities")
    op.drop_table("leads")
    op.drop_table("properties")
    op.drop_table("residents")
    op.drop_table("scheduled_assignments")
    op.drop_table("zone_assignments")
    op.drop_table("agent_zone_links")
    op.drop_table("agent_team_assignments")
    op.drop_table("teams")
    op.drop_table("users")
    op.drop_table("zones")
