"""turn engine tables

Revision ID: 0001_turn_engine
Revises:
Create Date: 2026-09-02 00:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from dm_engine.db.types import GUID, SeedValue


revision: str = "0001_turn_engine"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "campaigns",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("heat", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_campaigns_created_at", "campaigns", ["created_at"], unique=False)

    op.create_table(
        "campaign_members",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("campaign_id", GUID(), nullable=False),
        sa.Column("player_id", sa.String(length=128), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("campaign_id", "player_id", name="uq_campaign_members_campaign_player"),
    )
    op.create_index("ix_campaign_members_campaign_id", "campaign_members", ["campaign_id"], unique=False)
    op.create_index("ix_campaign_members_player_id", "campaign_members", ["player_id"], unique=False)

    op.create_table(
        "boards",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("campaign_id", GUID(), nullable=False),
        sa.Column("board_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("state_json", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_boards_campaign_id", "boards", ["campaign_id"], unique=False)
    op.create_index("ix_boards_status", "boards", ["status"], unique=False)
    op.create_index("ix_boards_updated_at", "boards", ["updated_at"], unique=False)

    op.create_table(
        "characters",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("campaign_id", GUID(), nullable=False),
        sa.Column("player_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("class_role", sa.String(length=64), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("xp", sa.Integer(), nullable=False),
        sa.Column("xp_to_next", sa.Integer(), nullable=False),
        sa.Column("hp", sa.Integer(), nullable=False),
        sa.Column("hp_max", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_characters_campaign_id", "characters", ["campaign_id"], unique=False)
    op.create_index("ix_characters_player_id", "characters", ["player_id"], unique=False)

    op.create_table(
        "campaign_companions",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("campaign_id", GUID(), nullable=False),
        sa.Column("companion_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("archetype", sa.String(length=64), nullable=False),
        sa.Column("mood", sa.String(length=32), nullable=False),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_campaign_companions_campaign_id", "campaign_companions", ["campaign_id"], unique=False)

    op.create_table(
        "items",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("campaign_id", GUID(), nullable=False),
        sa.Column("owner_character_id", GUID(), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("rarity", sa.String(length=32), nullable=False),
        sa.Column("slot", sa.String(length=32), nullable=False),
        sa.Column("item_power", sa.Integer(), nullable=False),
        sa.Column("stat_mods", sa.JSON(), nullable=False),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.ForeignKeyConstraint(["owner_character_id"], ["characters.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_items_campaign_id", "items", ["campaign_id"], unique=False)
    op.create_index("ix_items_owner_character_id", "items", ["owner_character_id"], unique=False)

    op.create_table(
        "turns",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("campaign_id", GUID(), nullable=False),
        sa.Column("player_id", sa.String(length=128), nullable=False),
        sa.Column("board_id", GUID(), nullable=True),
        sa.Column("board_type", sa.String(length=32), nullable=False),
        sa.Column("turn_index", sa.Integer(), nullable=False),
        sa.Column("turn_seed", SeedValue(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("request_json", sa.JSON(), nullable=False),
        sa.Column("response_json", sa.JSON(), nullable=False),
        sa.Column("patches_json", sa.JSON(), nullable=False),
        sa.Column("roll_log_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.ForeignKeyConstraint(["board_id"], ["boards.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("campaign_id", "turn_index", name="uq_turns_campaign_turn_index"),
    )
    op.create_index("ix_turns_campaign_id", "turns", ["campaign_id"], unique=False)
    op.create_index("ix_turns_player_id", "turns", ["player_id"], unique=False)
    op.create_index("ix_turns_campaign_created", "turns", ["campaign_id", "created_at"], unique=False)

    op.create_table(
        "turn_reward_grants",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("turn_id", GUID(), nullable=False),
        sa.Column("campaign_id", GUID(), nullable=False),
        sa.Column("character_id", GUID(), nullable=False),
        sa.Column("reward_key", sa.String(length=64), nullable=False),
        sa.Column("xp_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loot_item_id", GUID(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["turn_id"], ["turns.id"]),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.ForeignKeyConstraint(["character_id"], ["characters.id"]),
        sa.ForeignKeyConstraint(["loot_item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("turn_id", "character_id", "reward_key", name="uq_turn_reward_grants_turn_character_key"),
    )
    op.create_index("ix_turn_reward_grants_turn_id", "turn_reward_grants", ["turn_id"], unique=False)
    op.create_index("ix_turn_reward_grants_campaign_id", "turn_reward_grants", ["campaign_id"], unique=False)
    op.create_index("ix_turn_reward_grants_character_id", "turn_reward_grants", ["character_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_turn_reward_grants_character_id", table_name="turn_reward_grants")
    op.drop_index("ix_turn_reward_grants_campaign_id", table_name="turn_reward_grants")
    op.drop_index("ix_turn_reward_grants_turn_id", table_name="turn_reward_grants")
    op.drop_table("turn_reward_grants")
    op.drop_index("ix_turns_campaign_created", table_name="turns")
    op.drop_index("ix_turns_player_id", table_name="turns")
    op.drop_index("ix_turns_campaign_id", table_name="turns")
    op.drop_table("turns")
    op.drop_index("ix_items_owner_character_id", table_name="items")
    op.drop_index("ix_items_campaign_id", table_name="items")
    op.drop_table("items")
    op.drop_index("ix_campaign_companions_campaign_id", table_name="campaign_companions")
    op.drop_table("campaign_companions")
    op.drop_index("ix_characters_player_id", table_name="characters")
    op.drop_index("ix_characters_campaign_id", table_name="characters")
    op.drop_table("characters")
    op.drop_index("ix_boards_updated_at", table_name="boards")
    op.drop_index("ix_boards_status", table_name="boards")
    op.drop_index("ix_boards_campaign_id", table_name="boards")
    op.drop_table("boards")
    op.drop_index("ix_campaign_members_player_id", table_name="campaign_members")
    op.drop_index("ix_campaign_members_campaign_id", table_name="campaign_members")
    op.drop_table("campaign_members")
    op.drop_index("ix_campaigns_created_at", table_name="campaigns")
    op.drop_table("campaigns")
