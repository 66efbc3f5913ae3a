"""Initial schema: consulting_slots, bookings, availability_templates.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "consulting_slots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("specialist_id", sa.String(), nullable=False),
        sa.Column("specialist_email", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("total_capacity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("booked_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("total_capacity >= 1", name="ck_consulting_slots_capacity"),
        sa.CheckConstraint(
            "booked_count >= 0 AND booked_count <= total_capacity",
            name="ck_consulting_slots_booked_count",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_consulting_slots_specialist_id"), "consulting_slots", ["specialist_id"], unique=False)
    op.create_index(op.f("ix_consulting_slots_specialist_email"), "consulting_slots", ["specialist_email"], unique=False)
    op.create_index(op.f("ix_consulting_slots_date"), "consulting_slots", ["date"], unique=False)
    op.create_index(op.f("ix_consulting_slots_status"), "consulting_slots", ["status"], unique=False)
    op.create_index(op.f("ix_consulting_slots_created_at"), "consulting_slots", ["created_at"], unique=False)
    op.create_index("ix_consulting_slots_specialist_date", "consulting_slots", ["specialist_id", "date"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("slot_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("customer_email", sa.String(), nullable=False),
        sa.Column("customer_name", sa.String(), nullable=False),
        sa.Column("booked_at", sa.DateTime(), nullable=False),
        sa.Column("meeting_ref", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["slot_id"], ["consulting_slots.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slot_id", "customer_id", name="uq_bookings_slot_customer"),
    )
    op.create_index(op.f("ix_bookings_slot_id"), "bookings", ["slot_id"], unique=False)
    op.create_index(op.f("ix_bookings_customer_id"), "bookings", ["customer_id"], unique=False)

    op.create_table(
        "availability_templates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("specialist_id", sa.String(), nullable=False),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("default_capacity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("slot_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("buffer_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("weekly_pattern", sa.JSON(), nullable=False),
        sa.Column("last_saved_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_availability_templates_specialist_id"), "availability_templates", ["specialist_id"], unique=True)


def downgrade() -> None:
    op.drop_index(op.f("ix_availability_templates_specialist_id"), table_name="availability_templates")
    op.drop_table("availability_templates")
    op.drop_index(op.f("ix_bookings_customer_id"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_slot_id"), table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_consulting_slots_specialist_date", table_name="consulting_slots")
    op.drop_index(op.f("ix_consulting_slots_created_at"), table_name="consulting_slots")
    op.drop_index(op.f("ix_consulting_slots_status"), table_name="consulting_slots")
    op.drop_index(op.f("ix_consulting_slots_date"), table_name="consulting_slots")
    op.drop_index(op.f("ix_consulting_slots_specialist_email"), table_name="consulting_slots")
    op.drop_index(op.f("ix_consulting_slots_specialist_id"), table_name="consulting_slots")
    op.drop_table("consulting_slots")
