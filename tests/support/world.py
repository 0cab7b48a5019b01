from __future__ import annotations

import uuid
from dataclasses import dataclass

from dm_engine.db import session as db_session
from dm_engine.db.models import Board, Campaign, CampaignCompanion, CampaignMember, Character

TOWN_STATE: dict = {
    "world_seed": {"title": "Ashes of Ashford"},
    "region_name": "Ashford Crossing",
    "vendors": [
        {"id": "vendor_smith", "name": "Brannoc's Forge", "services": ["repair"]},
        {"id": "vendor_apothecary", "name": "The Green Vial", "services": ["potions"]},
    ],
    "rumors": ["A caravan vanished on the north road."],
    "objectives": ["Find the missing caravan."],
    "tension": 20,
}

DEFAULT_COMPANIONS: tuple[dict, ...] = (
    {"companion_id": "comp_ivy", "name": "Ivy", "archetype": "scout", "mood": "eager"},
    {"companion_id": "comp_rusk", "name": "Rusk", "archetype": "bruiser", "mood": "steady"},
)


@dataclass(frozen=True)
class SeededWorld:
    campaign_id: uuid.UUID
    board_id: uuid.UUID | None
    character_id: uuid.UUID | None
    player_id: str

    def headers(self, player_id: str | None = None) -> dict[str, str]:
        return {"X-Player-Id": player_id or self.player_id}


def seed_world(
    *,
    player_id: str = "player-1",
    board_type: str = "town",
    state: dict | None = None,
    with_board: bool = True,
    with_character: bool = True,
    companions: tuple[dict, ...] = DEFAULT_COMPANIONS,
    heat: int = 10,
    level: int = 1,
) -> SeededWorld:
    with db_session.SessionLocal() as db:
        with db.begin():
            campaign = Campaign(name="Test Campaign", heat=heat)
            db.add(campaign)
            db.flush()
            db.add(CampaignMember(campaign_id=campaign.id, player_id=player_id, role="owner"))
            board = None
            if with_board:
                board = Board(
                    campaign_id=campaign.id,
                    board_type=board_type,
                    status="active",
                    state_json=dict(TOWN_STATE if state is None else state),
                )
                db.add(board)
            character = None
            if with_character:
                character = Character(
                    campaign_id=campaign.id,
                    player_id=player_id,
                    name="Wren",
                    class_role="skirmisher",
                    level=level,
                )
                db.add(character)
            for companion in companions:
                db.add(CampaignCompanion(campaign_id=campaign.id, **companion))
            db.flush()
            world = SeededWorld(
                campaign_id=campaign.id,
                board_id=board.id if board else None,
                character_id=character.id if character else None,
                player_id=player_id,
            )
    return world


def board_state(board_id: uuid.UUID) -> dict:
    with db_session.SessionLocal() as db:
        board = db.get(Board, board_id)
        return dict(board.state_json or {}) if board else {}
