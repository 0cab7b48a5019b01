from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import AsyncIterator, Literal, TypedDict

import httpx

STREAM_RETRY_DELAYS_S = (0.2, 0.5)
SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"
TRUNCATED_FINISH_REASONS = {"length", "max_tokens"}


class ChatCompletionMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


class LLMCallError(RuntimeError):
    pass


@dataclass(frozen=True)
class NarratorStreamRequest:
    endpoint_url: str
    headers: dict[str, str]
    body: dict


@dataclass(frozen=True)
class StreamPiece:
    text: str = ""
    finish_reason: str | None = None


def narrator_messages(messages: list[dict]) -> list[ChatCompletionMessage]:
    """Keep chat roles the provider accepts; an empty conversation still sends one user turn."""
    kept: list[ChatCompletionMessage] = []
    for item in messages:
        if not isinstance(item, dict):
            continue
        role = str(item.get("role") or "").strip().lower()
        if role in {"system", "user", "assistant"}:
            kept.append({"role": role, "content": str(item.get("content") or "")})
    return kept or [{"role": "user", "content": ""}]


def build_stream_request(
    *,
    api_key: str,
    base_url: str,
    path: str,
    model: str,
    messages: list[dict],
    temperature: float,
) -> NarratorStreamRequest:
    return NarratorStreamRequest(
        endpoint_url=f"{base_url.rstrip('/')}/{path.lstrip('/')}",
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        body={
            "model": model,
            "messages": narrator_messages(messages),
            "temperature": round(float(temperature), 3),
            "stream": True,
            "response_format": {"type": "json_object"},
        },
    )


def parse_sse_data(line: str | None) -> dict | str | None:
    """Return the decoded ``data:`` chunk, ``SSE_DONE`` at end of stream, or None for noise."""
    text = str(line or "").strip()
    if not text.startswith(SSE_DATA_PREFIX):
        return None
    data = text[len(SSE_DATA_PREFIX) :].strip()
    if not data:
        return None
    if data == SSE_DONE:
        return SSE_DONE
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError as exc:
        raise LLMCallError("invalid streamed json chunk") from exc
    return chunk if isinstance(chunk, dict) else None


def read_stream_piece(chunk: dict, *, ignore_reasoning: bool) -> StreamPiece:
    choices = chunk.get("choices") if isinstance(chunk, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return StreamPiece()
    first = choices[0]
    finish_reason = first.get("finish_reason") if isinstance(first.get("finish_reason"), str) else None
    delta = first.get("delta") if isinstance(first.get("delta"), dict) else {}

    fragments: list[str] = []
    reasoning = delta.get("reasoning_content")
    if not ignore_reasoning and isinstance(reasoning, str):
        fragments.append(reasoning)
    content = delta.get("content")
    if isinstance(content, str):
        fragments.append(content)
    return StreamPiece(text="".join(fragments), finish_reason=finish_reason)


async def _stream_chat_completion_chunks(*, request: NarratorStreamRequest, timeout_s: float) -> AsyncIterator[dict]:
    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_s)) as client:
        async with client.stream("POST", request.endpoint_url, headers=request.headers, json=request.body) as response:
            if response.status_code != 200:
                raise httpx.HTTPStatusError(
                    f"narrator stream non-200: {response.status_code}",
                    request=response.request,
                    response=response,
                )
            async for line in response.aiter_lines():
                chunk = parse_sse_data(line)
                if chunk == SSE_DONE:
                    break
                if isinstance(chunk, dict):
                    yield chunk


async def call_chat_completions_stream_text(
    *,
    api_key: str,
    base_url: str,
    path: str,
    model: str,
    messages: list[dict],
    timeout_s: float,
    temperature: float = 0.7,
    ignore_reasoning: bool = True,
    max_attempts: int = 3,
) -> str:
    """Buffer a streamed narrator completion into one string.

    Connection failures are retried until the first chunk arrives. After that a
    broken or truncated stream fails the call, so partial JSON is never returned.
    """
    request = build_stream_request(
        api_key=api_key,
        base_url=base_url,
        path=path,
        model=model,
        messages=messages,
        temperature=temperature,
    )
    attempts = max(1, int(max_attempts))
    last_error: Exception | None = None
    for attempt in range(attempts):
        fragments: list[str] = []
        stream_started = False
        try:
            async for chunk in _stream_chat_completion_chunks(request=request, timeout_s=timeout_s):
                stream_started = True
                piece = read_stream_piece(chunk, ignore_reasoning=ignore_reasoning)
                fragments.append(piece.text)
                if piece.finish_reason in TRUNCATED_FINISH_REASONS:
                    raise LLMCallError(f"narrator output truncated: finish_reason={piece.finish_reason}")

            text = "".join(fragments).strip()
            if not text:
                raise LLMCallError("empty streamed content")
            return text
        except (httpx.HTTPError, ValueError, LLMCallError) as exc:
            last_error = exc
            if stream_started or attempt >= attempts - 1:
                break
            await asyncio.sleep(STREAM_RETRY_DELAYS_S[min(attempt, len(STREAM_RETRY_DELAYS_S) - 1)])
    raise LLMCallError(f"narrator stream failed: {last_error}")
