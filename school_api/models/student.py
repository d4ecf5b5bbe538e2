from __future__ import annotations

from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_api.core.database import Base
from school_api.models.school import new_id

if TYPE_CHECKING:
    from school_api.models.school import SchoolClass, Section


class Student(Base):
    __tablename__ = "students"
    __table_args__ = (
        Index("ix_students_school_section", "school_id", "section_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True
    )
    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="RESTRICT"), nullable=False
    )
    section_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sections.id", ondelete="RESTRICT"), nullable=False
    )

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    roll_no: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    school_class: Mapped["SchoolClass"] = relationship(lazy="joined")
    section: Mapped["Section"] = relationship(back_populates="students", lazy="joined")


class ParentStudent(Base):
    """Link table: which students a PARENT user may see."""
    __tablename__ = "parent_students"
    __table_args__ = (
        UniqueConstraint("parent_id", "student_id", name="uq_parent_students_parent_student"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    parent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )

    student: Mapped["Student"] = relationship(lazy="joined")
