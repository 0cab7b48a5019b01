from __future__ import annotations

import json


def narration(words: int, *, seed: str = "lantern") -> str:
    base = [
        "The", "square", "hums", "with", "wary", "traders", "and", "a", "smell", "of",
        "rain", "on", "old", "stone", "while", "bells", "count", "the", "slow", "hour.",
    ]
    out = [f"{seed.title()}light"]
    while len(out) < words:
        out.append(base[len(out) % len(base)])
    text = " ".join(out[:words])
    return text if text.endswith(".") else f"{text}."


def narrator_payload(
    *,
    words: int = 60,
    actions: list[dict] | None = None,
    runtime_delta: dict | None = None,
    mood: str = "tactical",
    **extra,
) -> dict:
    payload = {
        "narration": narration(words),
        "scene": {"environment": "town", "mood": mood, "focus": "market"},
        "runtime_delta": runtime_delta if runtime_delta is not None else {"rumors": ["Smoke rises past the mill."]},
        "ui_actions": actions
        if actions is not None
        else [
            {"id": "forge", "label": "Visit Brannoc's Forge", "intent": "shop_action", "payload": {"vendorId": "vendor_smith"}},
            {"id": "lead", "label": "Ask about the caravan", "intent": "quest_action", "prompt": "I ask the carters about the caravan."},
        ],
    }
    payload.update(extra)
    return payload


def narrator_json(**kwargs) -> str:
    return json.dumps(narrator_payload(**kwargs))


class ScriptedGenerator:
    """Replays canned responses in order; an Exception entry is raised instead of returned."""

    def __init__(self, responses: list[str | Exception]) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    def generate(self, messages: list[dict], *, temperature: float) -> str:
        self.calls.append({"messages": [dict(m) for m in messages], "temperature": temperature})
        if not self.responses:
            raise RuntimeError("scripted generator exhausted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response
