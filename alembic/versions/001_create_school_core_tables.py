"""create school core tables

Revision ID: 001
Revises: 
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision  = "001"
down_revision = None
branch_labels = None
depends_on    = None

role_enum = sa.Enum("SUPER_ADMIN", "SCHOOL_ADMIN", "TEACHER", "PARENT", name="role_enum")
status_enum = sa.Enum("PRESENT", "ABSENT", "LATE", "EXCUSED", name="attendance_status_enum")


def upgrade() -> None:
    op.create_table(
        "schools",
        sa.Column("id",         sa.String(36),              primary_key=True),
        sa.Column("code",       sa.String(50),              nullable=False, unique=True),
        sa.Column("name",       sa.String(200),             nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "classes",
        sa.Column("id",        sa.String(36),  primary_key=True),
        sa.Column("school_id", sa.String(36),  sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name",      sa.String(100), nullable=False),
        sa.UniqueConstraint("school_id", "name", name="uq_classes_school_name"),
    )
    op.create_index("ix_classes_school_id", "classes", ["school_id"])

    op.create_table(
        "sections",
        sa.Column("id",        sa.String(36), primary_key=True),
        sa.Column("school_id", sa.String(36), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("class_id",  sa.String(36), sa.ForeignKey("classes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name",      sa.String(50), nullable=False),
        sa.UniqueConstraint("school_id", "class_id", "name", name="uq_sections_school_class_name"),
    )
    op.create_index("ix_sections_school_id", "sections", ["school_id"])
    op.create_index("ix_sections_class_id",  "sections", ["class_id"])

    op.create_table(
        "users",
        sa.Column("id",         sa.String(36),              primary_key=True),
        sa.Column("phone",      sa.String(20),              nullable=False),
        sa.Column("email",      sa.String(255),             nullable=True, unique=True),
        sa.Column("name",       sa.String(120),             nullable=False),
        sa.Column("role",       role_enum,                  nullable=False),
        sa.Column("school_id",  sa.String(36),              sa.ForeignKey("schools.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_phone",     "users", ["phone"], unique=True)
    op.create_index("ix_users_school_id", "users", ["school_id"])

    op.create_table(
        "teachers",
        sa.Column("id",        sa.String(36), primary_key=True),
        sa.Column("user_id",   sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("school_id", sa.String(36), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
    )
    op.create_index("ix_teachers_school_id", "teachers", ["school_id"])

    op.create_table(
        "teacher_assignments",
        sa.Column("id",         sa.String(36), primary_key=True),
        sa.Column("teacher_id", sa.String(36), sa.ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("section_id", sa.String(36), sa.ForeignKey("sections.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("teacher_id", "section_id", name="uq_teacher_assignments_teacher_section"),
    )
    op.create_index("ix_teacher_assignments_teacher_id", "teacher_assignments", ["teacher_id"])
    op.create_index("ix_teacher_assignments_section_id", "teacher_assignments", ["section_id"])

    op.create_table(
        "students",
        sa.Column("id",         sa.String(36),  primary_key=True),
        sa.Column("school_id",  sa.String(36),  sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("class_id",   sa.String(36),  sa.ForeignKey("classes.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("section_id", sa.String(36),  sa.ForeignKey("sections.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name",       sa.String(120), nullable=False),
        sa.Column("roll_no",    sa.String(30),  nullable=True),
    )
    op.create_index("ix_students_school_id",      "students", ["school_id"])
    op.create_index("ix_students_school_section", "students", ["school_id", "section_id"])

    op.create_table(
        "parent_students",
        sa.Column("id",         sa.String(36), primary_key=True),
        sa.Column("parent_id",  sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.String(36), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("parent_id", "student_id", name="uq_parent_students_parent_student"),
    )
    op.create_index("ix_parent_students_parent_id",  "parent_students", ["parent_id"])
    op.create_index("ix_parent_students_student_id", "parent_students", ["student_id"])

    op.create_table(
        "attendance",
        sa.Column("id",         sa.String(36),              primary_key=True),
        sa.Column("student_id", sa.String(36),              sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("school_id",  sa.String(36),              sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date",       sa.Date(),                  nullable=False),
        sa.Column("status",     status_enum,                nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("student_id", "date", name="uq_attendance_student_date"),
    )
    op.create_index("ix_attendance_student_id",  "attendance", ["student_id"])
    op.create_index("ix_attendance_school_date", "attendance", ["school_id", "date"])

    op.create_table(
        "section_attendance_records",
        sa.Column("id",         sa.String(36),              primary_key=True),
        sa.Column("section_id", sa.String(36),              sa.ForeignKey("sections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("school_id",  sa.String(36),              sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date",       sa.Date(),                  nullable=False),
        sa.Column("marked_by",  sa.String(36),              sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("section_id", "date", name="uq_section_attendance_section_date"),
    )
    op.create_index("ix_section_attendance_records_school_id", "section_attendance_records", ["school_id"])

    op.create_table(
        "otps",
        sa.Column("id",         sa.String(36),              primary_key=True),
        sa.Column("phone",      sa.String(20),              nullable=False),
        sa.Column("channel",    sa.String(10),              nullable=False, server_default="sms"),
        sa.Column("code_hash",  sa.String(64),              nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used",       sa.Boolean(),               nullable=False, server_default="false"),
        sa.Column("attempts",   sa.Integer(),               nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_otps_phone", "otps", ["phone"])

    op.create_table(
        "otp_rate_limits",
        sa.Column("id",         sa.String(36),              primary_key=True),
        sa.Column("contact",    sa.String(255),             nullable=False),
        sa.Column("ip_address", sa.String(45),              nullable=False),
        sa.Column("count",      sa.Integer(),               nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("contact", "ip_address", name="uq_otp_rate_limits_contact_ip"),
    )
    op.create_index("ix_otp_rate_limits_expires_at", "otp_rate_limits", ["expires_at"])

    op.create_table(
        "trusted_devices",
        sa.Column("id",                sa.String(36),              primary_key=True),
        sa.Column("user_id",           sa.String(36),              sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("device_id",         sa.String(255),             nullable=False),
        sa.Column("device_name",       sa.String(255),             nullable=True),
        sa.Column("device_token_hash", sa.String(64),              nullable=False),
        sa.Column("ip_address",        sa.String(45),              nullable=True),
        sa.Column("user_agent",        sa.Text(),                  nullable=True),
        sa.Column("expires_at",        sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_used_at",      sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at",        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "device_id", name="uq_trusted_devices_user_device"),
    )
    op.create_index("ix_trusted_devices_user_id",    "trusted_devices", ["user_id"])
    op.create_index("ix_trusted_devices_expires_at", "trusted_devices", ["expires_at"])


def downgrade() -> None:
    for table in (
        "trusted_devices",
        "otp_rate_limits",
        "otps",
        "section_attendance_records",
        "attendance",
        "parent_students",
        "students",
        "teacher_assignments",
        "teachers",
        "users",
        "sections",
        "classes",
        "schools",
    ):
        op.drop_table(table)
    status_enum.drop(op.get_bind(), checkfirst=True)
    role_enum.drop(op.get_bind(), checkfirst=True)
