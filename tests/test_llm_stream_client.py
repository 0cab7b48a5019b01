from __future__ import annotations

import asyncio

import httpx
import pytest

from dm_engine.modules.llm_boundary.client import (
    SSE_DONE,
    LLMCallError,
    build_stream_request,
    call_chat_completions_stream_text,
    parse_sse_data,
)


def _base_kwargs() -> dict:
    return {
        "api_key": "k",
        "base_url": "https://example.com/v1",
        "path": "/chat/completions",
        "model": "demo-model",
        "messages": [{"role": "user", "content": "hello"}],
        "timeout_s": 5.0,
    }


def test_stream_client_concatenates_chunks_and_ignores_reasoning(monkeypatch) -> None:
    async def _fake_stream(**kwargs):
        del kwargs
        yield {"choices": [{"delta": {"content": "{\"narr"}}]}
        yield {"choices": [{"delta": {"reasoning_content": "internal reasoning"}}]}
        yield {"choices": [{"delta": {"content": "ation\": \"x\"}"}}]}

    monkeypatch.setattr("dm_engine.modules.llm_boundary.client._stream_chat_completion_chunks", _fake_stream)
    text = asyncio.run(call_chat_completions_stream_text(**_base_kwargs(), ignore_reasoning=True))
    assert text == '{"narration": "x"}'


def test_stream_client_can_include_reasoning_when_configured(monkeypatch) -> None:
    async def _fake_stream(**kwargs):
        del kwargs
        yield {"choices": [{"delta": {"reasoning_content": "think "}}]}
        yield {"choices": [{"delta": {"content": "answer"}}]}

    monkeypatch.setattr("dm_engine.modules.llm_boundary.client._stream_chat_completion_chunks", _fake_stream)
    text = asyncio.run(call_chat_completions_stream_text(**_base_kwargs(), ignore_reasoning=False))
    assert text == "think answer"


def test_stream_client_raises_on_empty_streamed_content(monkeypatch) -> None:
    async def _fake_stream(**kwargs):
        del kwargs
        yield {"choices": [{"delta": {"reasoning_content": "only reasoning"}}]}

    monkeypatch.setattr("dm_engine.modules.llm_boundary.client._stream_chat_completion_chunks", _fake_stream)
    with pytest.raises(LLMCallError):
        asyncio.run(call_chat_completions_stream_text(**_base_kwargs(), ignore_reasoning=True))


def test_stream_client_fails_fast_when_stream_breaks_midway(monkeypatch) -> None:
    state = {"attempt": 0}

    async def _broken_stream(**kwargs):
        del kwargs
        state["attempt"] += 1
        yield {"choices": [{"delta": {"content": "partial"}}]}
        raise httpx.ReadError("broken", request=httpx.Request("POST", "https://example.com"))

    monkeypatch.setattr("dm_engine.modules.llm_boundary.client._stream_chat_completion_chunks", _broken_stream)
    with pytest.raises(LLMCallError):
        asyncio.run(call_chat_completions_stream_text(**_base_kwargs(), ignore_reasoning=True))
    assert state["attempt"] == 1


def test_stream_client_retries_before_stream_start(monkeypatch) -> None:
    state = {"attempt": 0}

    async def _flaky_stream(**kwargs):
        del kwargs
        state["attempt"] += 1
        if state["attempt"] < 3:
            raise httpx.ConnectError("connect failed", request=httpx.Request("POST", "https://example.com"))
        yield {"choices": [{"delta": {"content": "ok"}}]}

    monkeypatch.setattr("dm_engine.modules.llm_boundary.client._stream_chat_completion_chunks", _flaky_stream)
    monkeypatch.setattr("dm_engine.modules.llm_boundary.client.STREAM_RETRY_DELAYS_S", (0.0,))
    text = asyncio.run(call_chat_completions_stream_text(**_base_kwargs(), ignore_reasoning=True))
    assert text == "ok"
    assert state["attempt"] == 3


def test_truncated_stream_is_not_returned(monkeypatch) -> None:
    async def _truncated(**kwargs):
        del kwargs
        yield {"choices": [{"delta": {"content": "{\"narration\": \"The gate"}}]}
        yield {"choices": [{"delta": {}, "finish_reason": "length"}]}

    monkeypatch.setattr("dm_engine.modules.llm_boundary.client._stream_chat_completion_chunks", _truncated)
    with pytest.raises(LLMCallError, match="truncated"):
        asyncio.run(call_chat_completions_stream_text(**_base_kwargs()))


def test_sse_lines_are_decoded() -> None:
    assert parse_sse_data("") is None
    assert parse_sse_data(": keep-alive") is None
    assert parse_sse_data("data: [DONE]") == SSE_DONE
    assert parse_sse_data('data: {"choices": []}') == {"choices": []}
    with pytest.raises(LLMCallError):
        parse_sse_data("data: {broken")


def test_stream_request_carries_temperature_and_json_mode() -> None:
    request = build_stream_request(
        api_key="k",
        base_url="https://example.com/v1/",
        path="/chat/completions",
        model="demo-model",
        messages=[{"role": "tool", "content": "x"}],
        temperature=0.30000001,
    )
    assert request.endpoint_url == "https://example.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer k"
    assert request.body["temperature"] == 0.3
    assert request.body["response_format"] == {"type": "json_object"}
    assert request.body["messages"] == [{"role": "user", "content": ""}]
