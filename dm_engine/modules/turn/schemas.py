from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

ActionIntent = Literal[
    "quest_action",
    "combat_start",
    "combat_action",
    "shop_action",
    "open_panel",
    "companion_action",
    "dm_prompt",
    "refresh",
]
ACTION_INTENTS: tuple[str, ...] = (
    "quest_action",
    "combat_start",
    "combat_action",
    "shop_action",
    "open_panel",
    "companion_action",
    "dm_prompt",
    "refresh",
)
MAX_ACTION_LABEL_LEN = 80
MAX_ACTION_PROMPT_LEN = 800


class Action(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, max_length=80)
    label: str = Field(min_length=1, max_length=MAX_ACTION_LABEL_LEN)
    intent: ActionIntent
    hint_key: str = Field(min_length=1, max_length=120)
    prompt: str | None = Field(default=None, max_length=MAX_ACTION_PROMPT_LEN)
    payload: dict = Field(default_factory=dict)


class CompanionCheckin(BaseModel):
    model_config = ConfigDict(extra="ignore")

    companion_id: str = Field(min_length=1, max_length=80)
    line: str = Field(min_length=1, max_length=320)
    mood: str = Field(default="steady", min_length=1, max_length=48)
    urgency: str = Field(default="low", min_length=1, max_length=24)
    hook_type: str = Field(default="advice", min_length=1, max_length=64)
    turn_index: int | None = None
    resolved: bool = False


class RuntimeDelta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rumors: list[Union[str, dict]] = Field(default_factory=list)
    objectives: list[Union[str, dict]] = Field(default_factory=list)
    discovery_log: list[Union[str, dict]] = Field(default_factory=list)
    discovery_flags: dict = Field(default_factory=dict)
    scene_cache: dict = Field(default_factory=dict)
    companion_checkins: list[CompanionCheckin] = Field(default_factory=list)
    action_chips: list[dict] = Field(default_factory=list)
    reward_hints: list[dict] = Field(default_factory=list)


class FactPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["FACT_CREATE", "FACT_SUPERSEDE"]
    fact_key: str = Field(min_length=1, max_length=160)
    data: dict


class EntityUpsertPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["ENTITY_UPSERT"]
    entity_key: str = Field(min_length=1, max_length=200)
    entity_type: str = Field(default="entity", min_length=1, max_length=80)
    data: dict
    tags: list[Annotated[str, Field(min_length=1, max_length=48)]] = Field(default_factory=list, max_length=24)


class RelationshipPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["REL_SET"]
    subject_key: str = Field(min_length=1, max_length=200)
    object_key: str = Field(min_length=1, max_length=200)
    rel_type: str = Field(min_length=1, max_length=80)
    data: dict = Field(default_factory=dict)


class QuestUpsertPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["QUEST_UPSERT"]
    quest_key: str = Field(min_length=1, max_length=200)
    data: dict


class LocationStatePatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["LOCATION_STATE_UPDATE"]
    location_key: str = Field(min_length=1, max_length=200)
    data: dict


WorldPatch = Annotated[
    Union[FactPatch, EntityUpsertPatch, RelationshipPatch, QuestUpsertPatch, LocationStatePatch],
    Field(discriminator="op"),
]


class NarratorOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    narration: str
    scene: dict = Field(default_factory=dict)
    runtime_delta: RuntimeDelta = Field(default_factory=RuntimeDelta)
    ui_actions: list[Action] = Field(default_factory=list)
    patches: list[WorldPatch] = Field(default_factory=list)
    roll_log: list[dict] = Field(default_factory=list)


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: Literal["user", "assistant", "system"]
    content: str = Field(max_length=8000)


class TurnRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    messages: list[ChatMessage] = Field(default_factory=list, max_length=80)
    action_context: dict | None = None
    expected_turn_index: int | None = Field(default=None, ge=0)


class TurnOut(BaseModel):
    id: str
    turn_index: int
    turn_seed: str
    player_id: str
    board_type: str
    status: str
    narration: str
    created_at: str | None = None


class TurnListOut(BaseModel):
    campaign_id: str
    turns: list[TurnOut]
