from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, TYPE_CHECKING

from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_api.core.database import Base

if TYPE_CHECKING:
    from school_api.models.student import Student


def new_id() -> str:
    return str(uuid.uuid4())


class School(Base):
    """
    A tenant. Every other row in the system hangs off a school; the
    super-admin role lives in a reserved "platform" school.
    """
    __tablename__ = "schools"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    classes: Mapped[List["SchoolClass"]] = relationship(back_populates="school")

    def __repr__(self) -> str:
        return f"<School id={self.id!r} code={self.code!r}>"


class SchoolClass(Base):
    __tablename__ = "classes"
    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_classes_school_name"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    school: Mapped["School"] = relationship(back_populates="classes")
    sections: Mapped[List["Section"]] = relationship(back_populates="school_class")


class Section(Base):
    __tablename__ = "sections"
    __table_args__ = (
        UniqueConstraint("school_id", "class_id", "name", name="uq_sections_school_class_name"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True
    )
    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    school_class: Mapped["SchoolClass"] = relationship(back_populates="sections", lazy="joined")
    students: Mapped[List["Student"]] = relationship(back_populates="section")
