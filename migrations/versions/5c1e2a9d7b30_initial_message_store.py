"""initial message store

Revision ID: 5c1e2a9d7b30
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from parley.db.time import UTCDateTime

# revision identifiers, used by Alembic.
revision: str = "5c1e2a9d7b30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, groups, conversations and messages."""
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("fullname", sa.String(length=64), nullable=False),
        sa.Column("username", sa.String(length=32), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )
    op.create_index("ix_user_account_email", "user_account", ["email"], unique=True)

    op.create_table(
        "chat_group",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("creator_id", sa.Integer(), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("deleted_at", UTCDateTime(), nullable=True),
        sa.ForeignKeyConstraint(["creator_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "group_member",
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["chat_group.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("group_id", "user_id"),
    )

    op.create_table(
        "conversation",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("is_group", sa.Boolean(), nullable=False),
        sa.Column("direct_key", sa.String(length=64), nullable=True),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("last_message_id", sa.Integer(), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["chat_group.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("direct_key"),
        sa.UniqueConstraint("group_id"),
    )
    op.create_table(
        "conversation_participant",
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversation.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("conversation_id", "user_id"),
    )
    op.create_index(
        "ix_conversation_participant_user_id", "conversation_participant", ["user_id"]
    )

    op.create_table(
        "message",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=True),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("client_token", sa.String(length=128), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False),
        sa.Column("is_scheduled", sa.Boolean(), nullable=False),
        sa.Column("scheduled_at", UTCDateTime(), nullable=True),
        sa.Column("is_burnout", sa.Boolean(), nullable=False),
        sa.Column("expire_at", UTCDateTime(), nullable=True),
        sa.Column("deleted_at", UTCDateTime(), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False),
        sa.CheckConstraint(
            "(recipient_id IS NULL AND group_id IS NOT NULL)"
            " OR (recipient_id IS NOT NULL AND group_id IS NULL)",
            name="ck_message_single_destination",
        ),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversation.id"]),
        sa.ForeignKeyConstraint(["group_id"], ["chat_group.id"]),
        sa.ForeignKeyConstraint(["recipient_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["sender_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_message_group_id", "message", ["group_id"])
    op.create_index("ix_message_due_send", "message", ["is_scheduled", "scheduled_at"])
    op.create_index("ix_message_due_expiry", "message", ["is_burnout", "expire_at"])
    op.create_index(
        "ix_message_conversation_time", "message", ["conversation_id", "created_at"]
    )

    with op.batch_alter_table("conversation") as batch_op:
        batch_op.create_foreign_key(
            "fk_conversation_last_message", "message", ["last_message_id"], ["id"]
        )


def downgrade() -> None:
    """Drop the message store."""
    with op.batch_alter_table("conversation") as batch_op:
        batch_op.drop_constraint("fk_conversation_last_message", type_="foreignkey")
    op.drop_index("ix_message_conversation_time", table_name="message")
    op.drop_index("ix_message_due_expiry", table_name="message")
    op.drop_index("ix_message_due_send", table_name="message")
    op.drop_index("ix_message_group_id", table_name="message")
    op.drop_table("message")
    op.drop_index("ix_conversation_participant_user_id", table_name="conversation_participant")
    op.drop_table("conversation_participant")
    op.drop_table("conversation")
    op.drop_table("group_member")
    op.drop_table("chat_group")
    op.drop_index("ix_user_account_email", table_name="user_account")
    op.drop_table("user_account")
