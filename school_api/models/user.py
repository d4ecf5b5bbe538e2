from __future__ import annotations

from enum import Enum
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, func, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from school_api.core.database import Base
from school_api.models.school import new_id


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    SCHOOL_ADMIN = "SCHOOL_ADMIN"
    TEACHER = "TEACHER"
    PARENT = "PARENT"


class User(Base):
    """
    An authenticated identity. `school_id` is never NULL: super admins are
    attached to the platform school. `role` and `school_id` are fixed at
    registration.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    phone: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)

    role: Mapped[Role] = mapped_column(SAEnum(Role, name="role_enum"), nullable=False)
    school_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("schools.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} phone={self.phone!r} role={self.role.value}>"
