"""pipeline core: users, quotas, mail accounts, video artifacts

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("plan", sa.String(length=32), nullable=False, server_default="starter"),
        sa.Column("videos_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("camera_position", sa.String(length=16), nullable=False, server_default="bottom-right"),
        sa.Column("camera_size", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("videos_count >= 0", name="ck_users_videos_count_non_negative"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "sender_profiles",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("sender_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("sender_title", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("sender_company", sa.String(length=160), nullable=False, server_default=""),
        sa.Column("sender_email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("work_summary", sa.Text(), nullable=False, server_default=""),
        sa.Column("cta_link", sa.String(length=500), nullable=False, server_default=""),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_sender_profiles_user"),
    )

    op.create_table(
        "mail_accounts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
        sa.Column("smtp_host", sa.String(length=255), nullable=True),
        sa.Column("smtp_port", sa.Integer(), nullable=True),
        sa.Column("smtp_password_encrypted", sa.Text(), nullable=True),
        sa.Column("window_date", sa.Date(), nullable=True),
        sa.Column("sent_today", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_days_with_sends", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "provider", name="uq_mail_accounts_user_provider"),
        sa.CheckConstraint("provider IN ('google', 'microsoft', 'imap')", name="ck_mail_accounts_provider"),
        sa.CheckConstraint("sent_today >= 0", name="ck_mail_accounts_sent_today_non_negative"),
    )

    op.create_table(
        "mail_counts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("success_mails", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failed_mails", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_mail_counts_user"),
    )

    op.create_table(
        "video_artifacts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("folder_id", sa.String(length=64), nullable=True),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("source_url", sa.String(length=2048), nullable=False),
        sa.Column("remote_url", sa.String(length=2048), nullable=False),
        sa.Column("recipient_email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("recipient_name", sa.String(length=160), nullable=False, server_default=""),
        sa.Column("recipient_company", sa.String(length=160), nullable=False, server_default=""),
        sa.Column("recipient_title", sa.String(length=160), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "job_id", "row_index", name="uq_video_artifacts_job_row"),
    )
    op.create_index("ix_video_artifacts_user_folder", "video_artifacts", ["user_id", "folder_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_video_artifacts_user_folder", table_name="video_artifacts")
    op.drop_table("video_artifacts")
    op.drop_table("mail_counts")
    op.drop_table("mail_accounts")
    op.drop_table("sender_profiles")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
