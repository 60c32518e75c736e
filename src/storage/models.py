"""SQLAlchemy ORM models for users, quotas, mail accounts and produced videos."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional
import uuid

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from src.storage.db import Base


MAIL_PROVIDER_GOOGLE = "google"
MAIL_PROVIDER_MICROSOFT = "microsoft"
MAIL_PROVIDER_IMAP = "imap"


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    plan: Mapped[str] = mapped_column(String(32), nullable=False, default="starter")
    videos_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    camera_position: Mapped[str] = mapped_column(String(16), nullable=False, default="bottom-right")
    camera_size: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class SenderProfile(Base):
    __tablename__ = "sender_profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    sender_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    sender_title: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    sender_company: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    sender_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    work_summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    cta_link: Mapped[str] = mapped_column(String(500), nullable=False, default="")


class MailAccount(Base):
    __tablename__ = "mail_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    refresh_token_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    smtp_host: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    smtp_port: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    smtp_password_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    window_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    sent_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_days_with_sends: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_mail_accounts_user_provider"),
    )


class MailCount(Base):
    __tablename__ = "mail_counts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    success_mails: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_mails: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class VideoArtifact(Base):
    __tablename__ = "video_artifacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    folder_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False)
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    source_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    remote_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    recipient_name: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    recipient_company: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    recipient_title: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "job_id", "row_index", name="uq_video_artifacts_job_row"),
        Index("ix_video_artifacts_user_folder", "user_id", "folder_id"),
    )
