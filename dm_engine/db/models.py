import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dm_engine.db.base import Base
from dm_engine.db.types import GUID, JSONType, SeedValue
from dm_engine.utils.time import utc_now_naive


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), default="")
    heat: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)


class CampaignMember(Base):
    __tablename__ = "campaign_members"
    __table_args__ = (
        UniqueConstraint("campaign_id", "player_id", name="uq_campaign_members_campaign_player"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("campaigns.id"), index=True)
    player_id: Mapped[str] = mapped_column(String(128), index=True)
    role: Mapped[str] = mapped_column(String(32), default="player")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Board(Base):
    __tablename__ = "boards"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("campaigns.id"), index=True)
    board_type: Mapped[str] = mapped_column(String(32), default="town")
    status: Mapped[str] = mapped_column(String(32), default="active", index=True)
    state_json: Mapped[dict] = mapped_column(JSONType, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive, index=True)


class Character(Base):
    __tablename__ = "characters"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("campaigns.id"), index=True)
    player_id: Mapped[str] = mapped_column(String(128), index=True)
    name: Mapped[str] = mapped_column(String(100), default="")
    class_role: Mapped[str] = mapped_column(String(64), default="")
    level: Mapped[int] = mapped_column(Integer, default=1)
    xp: Mapped[int] = mapped_column(Integer, default=0)
    xp_to_next: Mapped[int] = mapped_column(Integer, default=250)
    hp: Mapped[int] = mapped_column(Integer, default=100)
    hp_max: Mapped[int] = mapped_column(Integer, default=100)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)


class CampaignCompanion(Base):
    __tablename__ = "campaign_companions"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("campaigns.id"), index=True)
    companion_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(100), default="")
    archetype: Mapped[str] = mapped_column(String(64), default="")
    mood: Mapped[str] = mapped_column(String(32), default="steady")


class Item(Base):
    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("campaigns.id"), index=True)
    owner_character_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("characters.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200), default="")
    rarity: Mapped[str] = mapped_column(String(32), default="common")
    slot: Mapped[str] = mapped_column(String(32), default="trinket")
    item_power: Mapped[int] = mapped_column(Integer, default=0)
    stat_mods: Mapped[dict] = mapped_column(JSONType, default=dict)
    source: Mapped[str] = mapped_column(String(64), default="story_reward")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Turn(Base):
    __tablename__ = "turns"
    __table_args__ = (
        UniqueConstraint("campaign_id", "turn_index", name="uq_turns_campaign_turn_index"),
        Index("ix_turns_campaign_created", "campaign_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("campaigns.id"), index=True)
    player_id: Mapped[str] = mapped_column(String(128), index=True)
    board_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("boards.id"), nullable=True)
    board_type: Mapped[str] = mapped_column(String(32), default="town")
    turn_index: Mapped[int] = mapped_column(Integer)
    turn_seed: Mapped[int] = mapped_column(SeedValue())
    status: Mapped[str] = mapped_column(String(32), default="committed")
    request_json: Mapped[dict] = mapped_column(JSONType, default=dict)
    response_json: Mapped[dict] = mapped_column(JSONType, default=dict)
    patches_json: Mapped[list] = mapped_column(JSONType, default=list)
    roll_log_json: Mapped[list] = mapped_column(JSONType, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class TurnRewardGrant(Base):
    __tablename__ = "turn_reward_grants"
    __table_args__ = (
        UniqueConstraint("turn_id", "character_id", "reward_key", name="uq_turn_reward_grants_turn_character_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    turn_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("turns.id"), index=True)
    campaign_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("campaigns.id"), index=True)
    character_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("characters.id"), index=True)
    reward_key: Mapped[str] = mapped_column(String(64), default="story_reward_v1")
    xp_amount: Mapped[int] = mapped_column(Integer, default=0)
    loot_item_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("items.id"), nullable=True)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
