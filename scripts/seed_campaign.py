#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from dm_engine.db.models import Board, Campaign, CampaignCompanion, CampaignMember, Character
from dm_engine.db.session import SessionLocal

DEMO_VENDORS = [
    {"id": "vendor_smith", "name": "Brannoc's Forge", "services": ["repair", "weapons"]},
    {"id": "vendor_apothecary", "name": "The Green Vial", "services": ["potions"]},
]
DEMO_COMPANIONS = [
    {"companion_id": "comp_ivy", "name": "Ivy", "archetype": "scout", "mood": "eager"},
    {"companion_id": "comp_rusk", "name": "Rusk", "archetype": "bruiser", "mood": "steady"},
]


def seed_campaign(*, player_id: str, name: str, character_name: str, class_role: str) -> dict:
    with SessionLocal() as db:
        with db.begin():
            campaign = Campaign(name=name, heat=10)
            db.add(campaign)
            db.flush()
            db.add(CampaignMember(campaign_id=campaign.id, player_id=player_id, role="owner"))
            board = Board(
                campaign_id=campaign.id,
                board_type="town",
                status="active",
                state_json={
                    "world_seed": {"title": name},
                    "region_name": "Ashford Crossing",
                    "vendors": DEMO_VENDORS,
                    "rumors": ["A caravan vanished on the north road."],
                    "objectives": ["Find the missing caravan."],
                    "tension": 20,
                },
            )
            db.add(board)
            character = Character(
                campaign_id=campaign.id,
                player_id=player_id,
                name=character_name,
                class_role=class_role,
            )
            db.add(character)
            for companion in DEMO_COMPANIONS:
                db.add(CampaignCompanion(campaign_id=campaign.id, **companion))
            db.flush()
            result = {
                "campaign_id": str(campaign.id),
                "board_id": str(board.id),
                "character_id": str(character.id),
                "player_id": player_id,
            }
    return result


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a demo campaign with a town board, a character and companions.")
    parser.add_argument("--player-id", default="demo-player", help="Player id that becomes the campaign owner.")
    parser.add_argument("--name", default="Ashes of Ashford", help="Campaign name, also used as the board title.")
    parser.add_argument("--character-name", default="Wren", help="Name of the player's character.")
    parser.add_argument("--class-role", default="skirmisher", help="Class role used for loot slot weighting.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    result = seed_campaign(
        player_id=str(args.player_id),
        name=str(args.name),
        character_name=str(args.character_name),
        class_role=str(args.class_role),
    )
    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
