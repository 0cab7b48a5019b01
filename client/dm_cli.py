from __future__ import annotations

import json
import os
import time
import uuid
from pathlib import Path
from typing import Any

import httpx
import typer

app = typer.Typer(help="DM turn engine CLI")

DEFAULT_BACKEND_URL = "http://127.0.0.1:8000"
API_PREFIX = "/api/v1"
STATE_PATH = Path(__file__).resolve().parent / ".state.json"
TURN_IDEMPOTENCY_HEADER = "X-Idempotency-Key"
PLAYER_ID_HEADER = "X-Player-Id"
PLAYER_TOKEN_HEADER = "X-Player-Token"
TELEMETRY_TOKEN_HEADER = "X-Telemetry-Token"
TURN_MAX_ATTEMPTS = 2
TURN_RETRY_BACKOFF_S = 0.35
TURN_TIMEOUT_S = 90.0


def load_state(path: Path = STATE_PATH) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text())
    except (json.JSONDecodeError, OSError):
        return {}


def save_state(data: dict[str, Any], path: Path = STATE_PATH) -> None:
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2))


def backend_url() -> str:
    return os.getenv("BACKEND_URL", DEFAULT_BACKEND_URL).rstrip("/")


def request(
    method: str,
    endpoint: str,
    *,
    json_body: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout_s: float = 20.0,
) -> httpx.Response:
    url = f"{backend_url()}{endpoint}"
    with httpx.Client(timeout=timeout_s) as client:
        return client.request(method, url, json=json_body, params=params, headers=headers)


def build_turn_headers(
    player_id: str,
    idempotency_key: str | None = None,
    token: str | None = None,
) -> tuple[str, dict[str, str]]:
    key = str(idempotency_key).strip() if idempotency_key else uuid.uuid4().hex
    headers = {PLAYER_ID_HEADER: player_id, TURN_IDEMPOTENCY_HEADER: key}
    if token:
        headers[PLAYER_TOKEN_HEADER] = token
    return key, headers


def response_error_code(resp: httpx.Response) -> str | None:
    try:
        payload = resp.json()
    except ValueError:
        return None
    code = payload.get("code") if isinstance(payload, dict) else None
    if isinstance(code, str) and code.strip():
        return code.strip()
    return None


def is_turn_conflict_response(resp: httpx.Response) -> bool:
    return int(resp.status_code) == 409 and response_error_code(resp) == "turn_conflict"


def build_turn_payload(
    text: str | None,
    *,
    history: list[dict[str, str]] | None = None,
    action: dict[str, Any] | None = None,
    expected_turn_index: int | None = None,
) -> dict[str, Any]:
    messages = [dict(m) for m in history or [] if isinstance(m, dict) and m.get("role") in {"user", "assistant"}]
    if text:
        messages.append({"role": "user", "content": text})
    payload: dict[str, Any] = {"messages": messages}
    if action:
        payload["action_context"] = action
    if expected_turn_index is not None:
        payload["expected_turn_index"] = expected_turn_index
    return payload


def _resolve_campaign_id(campaign_id: str | None) -> str:
    if campaign_id:
        return campaign_id
    cid = load_state().get("campaign_id")
    if not cid:
        raise typer.BadParameter("No campaign_id provided and no saved campaign in client/.state.json")
    return str(cid)


def _resolve_player_id(player_id: str | None) -> str:
    if player_id:
        return player_id
    pid = os.getenv("PLAYER_ID") or load_state().get("player_id")
    if not pid:
        raise typer.BadParameter("No player_id provided; pass --player-id or set PLAYER_ID")
    return str(pid)


def _handle_response(resp: httpx.Response, action: str) -> dict[str, Any] | None:
    if resp.status_code in (404, 501):
        typer.echo(f"{action}: endpoint unavailable or resource not found ({resp.status_code}).")
        typer.echo(resp.text)
        return None
    if resp.status_code >= 400:
        typer.echo(f"{action} failed ({resp.status_code}, code={response_error_code(resp)}): {resp.text}")
        raise typer.Exit(code=1)
    try:
        return resp.json()
    except ValueError:
        typer.echo(resp.text)
        return None


def _print_turn(body: dict[str, Any]) -> None:
    meta = body.get("meta") or {}
    typer.echo(f"turn_index: {meta.get('turn_index')} mode={meta.get('turn_mode')} seed={meta.get('turn_seed')}")
    typer.echo(f"narration: {body.get('narration')}")
    if meta.get("dm_recovery_used"):
        typer.echo(f"recovery: {meta.get('dm_recovery_reason')} after {meta.get('dm_validation_attempts')} attempts")
    checkin = meta.get("companion_checkin")
    if isinstance(checkin, dict):
        typer.echo(f"companion ({checkin.get('companion_id')}): {checkin.get('line')}")
    reward = meta.get("reward_summary") or {}
    if reward.get("granted"):
        typer.echo(f"reward: xp={reward.get('xp')} loot={(reward.get('loot') or {}).get('name')}")

    actions = body.get("ui_actions", [])
    if actions:
        typer.echo("actions:")
        for a in actions:
            typer.echo(f"  - {a.get('id')}: {a.get('label')} ({a.get('intent')})")
    for warning in body.get("warnings") or []:
        typer.echo(f"warning: {warning}")


@app.command()
def ping() -> None:
    resp = request("GET", "/health")
    body = _handle_response(resp, "ping")
    if body is not None:
        typer.echo(f"ok: {body}")


@app.command()
def turn(
    text: str | None = typer.Option(default=None, help="Player input text"),
    action_id: str | None = typer.Option(None, "--action-id", help="Action id from the previous turn"),
    campaign_id: str | None = typer.Option(None, "--campaign-id", help="Override campaign id"),
    player_id: str | None = typer.Option(None, "--player-id", help="Player id sent as X-Player-Id"),
    expected_turn_index: int | None = typer.Option(None, "--expected-turn-index"),
    idempotency_key: str | None = typer.Option(None, "--idempotency-key", help="Optional idempotency key"),
) -> None:
    if not text and not action_id:
        raise typer.BadParameter("Provide --text or --action-id")
    cid = _resolve_campaign_id(campaign_id)
    pid = _resolve_player_id(player_id)
    state = load_state()

    action = None
    if action_id:
        known = {str(a.get("id")): a for a in state.get("last_actions") or [] if isinstance(a, dict)}
        action = known.get(action_id)
        if action is None:
            raise typer.BadParameter(f"Unknown action id {action_id}; run a turn first")

    payload = build_turn_payload(
        text,
        history=state.get("history") if state.get("campaign_id") == cid else None,
        action=action,
        expected_turn_index=expected_turn_index,
    )
    key, headers = build_turn_headers(pid, idempotency_key, os.getenv("PLAYER_TOKEN"))
    for attempt in range(1, TURN_MAX_ATTEMPTS + 1):
        try:
            resp = request(
                "POST",
                f"{API_PREFIX}/campaigns/{cid}/turns",
                json_body=payload,
                headers=headers,
                timeout_s=TURN_TIMEOUT_S,
            )
        except httpx.RequestError as exc:
            # same key, so a turn the server already committed replays instead of running twice
            if attempt == TURN_MAX_ATTEMPTS:
                typer.echo(f"turn failed after {attempt} attempts: network error ({exc}) key={key}")
                raise typer.Exit(code=1) from exc
            time.sleep(TURN_RETRY_BACKOFF_S * attempt)
            continue

        if is_turn_conflict_response(resp):
            details = (resp.json().get("details") or {}) if resp.content else {}
            typer.echo(f"turn conflict: expected={details.get('expected_turn_index')} next={details.get('next_turn_index')}")
            raise typer.Exit(code=1)

        body = _handle_response(resp, "turn")
        if body is None:
            return
        history = list(payload["messages"])
        history.append({"role": "assistant", "content": str(body.get("narration") or "")})
        state.update(
            {
                "campaign_id": cid,
                "player_id": pid,
                "history": history[-40:],
                "last_actions": body.get("ui_actions") or [],
            }
        )
        save_state(state)
        _print_turn(body)
        return


@app.command()
def turns(
    campaign_id: str | None = typer.Option(None, "--campaign-id"),
    player_id: str | None = typer.Option(None, "--player-id"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    cid = _resolve_campaign_id(campaign_id)
    pid = _resolve_player_id(player_id)
    _, headers = build_turn_headers(pid, token=os.getenv("PLAYER_TOKEN"))
    headers.pop(TURN_IDEMPOTENCY_HEADER, None)
    resp = request("GET", f"{API_PREFIX}/campaigns/{cid}/turns", params={"limit": limit}, headers=headers)
    body = _handle_response(resp, "turns")
    if body is None:
        return
    for item in body.get("turns", []):
        typer.echo(f"#{item.get('turn_index')} [{item.get('status')}] {item.get('board_type')}: {item.get('narration')}")


@app.command()
def telemetry() -> None:
    headers = {}
    token = os.getenv("TELEMETRY_TOKEN")
    if token:
        headers[TELEMETRY_TOKEN_HEADER] = token
    resp = request("GET", f"{API_PREFIX}/telemetry/turns", headers=headers)
    body = _handle_response(resp, "telemetry")
    if body is not None:
        typer.echo(json.dumps(body, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    app()
