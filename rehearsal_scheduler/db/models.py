from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from rehearsal_scheduler.utils import to_utc_naive, utcnow
from .database import Base


def _now():
    return to_utc_naive(utcnow())


class UserRecord(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String(50), nullable=False)
    password_hash = Column(String, nullable=False)
    # phone, instruments, profileImage and preferences
    profile = Column(JSON, nullable=False, default=dict)
    reset_password_token = Column(String, nullable=True, index=True)
    reset_password_expire = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)


class BandRecord(Base):
    __tablename__ = "bands"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=_now)

    members = relationship(
        "BandMemberRecord",
        back_populates="band",
        cascade="all, delete-orphan",
        order_by="BandMemberRecord.id",
    )


class BandMemberRecord(Base):
    __tablename__ = "band_members"
    __table_args__ = (UniqueConstraint("band_id", "user_id", name="uq_band_member"),)

    id = Column(Integer, primary_key=True, index=True)
    band_id = Column(Integer, ForeignKey("bands.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(String, nullable=False, default="member")
    joined_at = Column(DateTime, default=_now)

    band = relationship("BandRecord", back_populates="members")


class RehearsalRecord(Base):
    """A rehearsal document plus the columns it is queried by."""

    __tablename__ = "rehearsals"
    __table_args__ = (Index("ix_rehearsals_band_start", "band_id", "start_time"),)

    id = Column(Integer, primary_key=True, index=True)
    band_id = Column(Integer, ForeignKey("bands.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_cancelled = Column(Boolean, nullable=False, default=False)
    document = Column(JSON, nullable=False)
