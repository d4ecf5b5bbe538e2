from datetime import datetime

from sqlalchemy import String, Integer, Boolean, DateTime, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from school_api.core.database import Base
from school_api.models.school import new_id


class Otp(Base):
    """
    Issued one-time codes. Rows are never deleted; they are retired by
    setting `used` (on success, on re-issue, or once attempts run out).
    """
    __tablename__ = "otps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    phone: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(10), nullable=False, default="sms", server_default="sms")

    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class OtpRateLimit(Base):
    """Issuance counter per (contact, ip) with a sliding expiry."""
    __tablename__ = "otp_rate_limits"
    __table_args__ = (
        UniqueConstraint("contact", "ip_address", name="uq_otp_rate_limits_contact_ip"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    contact: Mapped[str] = mapped_column(String(255), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
