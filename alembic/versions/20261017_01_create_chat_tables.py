"""create chat tables

Revision ID: 20261017_01
Revises: 
Create Date: 2026-10-17 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_01"
down_revision = None
branch_labels = None
depends_on = None


ACCOUNT_STATUS = sa.Enum("active", "inactive", "suspended", name="account_status")
PRESENCE_STATUS = sa.Enum("online", "offline", name="presence_status")
CHAT_TYPE = sa.Enum("private", "group", "event", "tribe", name="chat_type")
CHAT_STATUS = sa.Enum("active", "archived", "deleted", "suspended", name="chat_status")
PARTICIPANT_ROLE = sa.Enum("member", "moderator", "admin", name="participant_role")
_MESSAGE_TYPES = ("text", "image", "video", "audio", "file", "location", "event", "tribe")
MESSAGE_TYPE = sa.Enum(*_MESSAGE_TYPES, name="message_type")
LAST_MESSAGE_TYPE = sa.Enum(*_MESSAGE_TYPES, name="last_message_type")


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=64), nullable=True),
        sa.Column("last_name", sa.String(length=64), nullable=True),
        sa.Column("avatar_url", sa.String(length=512), nullable=True),
        sa.Column("account_status", ACCOUNT_STATUS, nullable=False, server_default="active"),
        sa.Column("presence", PRESENCE_STATUS, nullable=False, server_default="offline"),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )

    op.create_table(
        "chats",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("type", CHAT_TYPE, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("owner_id", sa.Integer(), nullable=True),
        sa.Column("status", CHAT_STATUS, nullable=False, server_default="active"),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_message_content", sa.Text(), nullable=True),
        sa.Column("last_message_sender_id", sa.Integer(), nullable=True),
        sa.Column("last_message_type", LAST_MESSAGE_TYPE, nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["last_message_sender_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_chats_last_activity", "chats", ["last_activity_at"])

    op.create_table(
        "chat_participants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("chat_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", PARTICIPANT_ROLE, nullable=False, server_default="member"),
        _created_at("joined_at"),
        sa.ForeignKeyConstraint(["chat_id"], ["chats.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("chat_id", "user_id", name="uq_chat_participant"),
    )
    op.create_index("ix_chat_participants_user", "chat_participants", ["user_id"])

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("chat_id", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", MESSAGE_TYPE, nullable=False, server_default="text"),
        sa.Column("reply_to_id", sa.Integer(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["chat_id"], ["chats.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reply_to_id"], ["chat_messages.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_chat_messages_chat_created_at", "chat_messages", ["chat_id", "created_at"]
    )

    op.create_table(
        "message_reads",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        _created_at("read_at"),
        sa.ForeignKeyConstraint(["message_id"], ["chat_messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_read"),
    )

    op.create_table(
        "message_reactions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("reaction", sa.String(length=32), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["message_id"], ["chat_messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_reaction_user"),
    )

    op.create_table(
        "pinned_messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("chat_id", sa.Integer(), nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("pinned_by_id", sa.Integer(), nullable=True),
        _created_at("pinned_at"),
        sa.ForeignKeyConstraint(["chat_id"], ["chats.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["message_id"], ["chat_messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["pinned_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("chat_id", "message_id", name="uq_chat_pinned_message"),
    )


def downgrade() -> None:
    op.drop_table("pinned_messages")
    op.drop_table("message_reactions")
    op.drop_table("message_reads")
    op.drop_index("ix_chat_messages_chat_created_at", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_chat_participants_user", table_name="chat_participants")
    op.drop_table("chat_participants")
    op.drop_index("ix_chats_last_activity", table_name="chats")
    op.drop_table("chats")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        LAST_MESSAGE_TYPE,
        MESSAGE_TYPE,
        PARTICIPANT_ROLE,
        CHAT_STATUS,
        CHAT_TYPE,
        PRESENCE_STATUS,
        ACCOUNT_STATUS,
    ):
        enum.drop(bind, checkfirst=True)
