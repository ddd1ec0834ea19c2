from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from openai import RateLimitError

from insight_bot.models import Persona
from insight_bot.openai_service import OpenAIService, OpenAIServiceError


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def service():
    svc = OpenAIService(api_key="sk-test", model="gpt-4.1-nano", insights_model="gpt-4.1")
    svc.client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock())))
    return svc


@pytest.mark.asyncio
async def test_interviewer_reply_uses_stop_sequences(service):
    service.client.chat.completions.create.return_value = _response("  What do you cook on weekdays?  ")
    history = [{"role": "assistant", "content": "Hi!"}]

    text = await service.generate_interviewer_reply(
        product_idea="Meal-planning app",
        persona=Persona(name="Dana", company="Meal-planning app"),
        history=history,
        user_response="Hello",
    )

    assert text == "What do you cook on weekdays?"
    kwargs = service.client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4.1-nano"
    assert kwargs["stop"] == ["\nUser:", "\nDana:"]
    assert kwargs["temperature"] == 0.7
    assert kwargs["max_tokens"] == 150
    assert kwargs["messages"][0]["role"] == "system"
    assert kwargs["messages"][1:] == [*history, {"role": "user", "content": "Hello"}]


@pytest.mark.asyncio
async def test_empty_reply_raises(service):
    service.client.chat.completions.create.return_value = _response("")

    with pytest.raises(OpenAIServiceError):
        await service.generate_interviewer_reply("idea", Persona(name="Dana", company="Co"), [], "hi")


@pytest.mark.asyncio
async def test_extract_insights_uses_insights_model_and_json_mode(service):
    payload = {"summary": {"whatWeLearned": "a", "whatToBuildNext": "b"}}
    service.client.chat.completions.create.return_value = _response(json.dumps(payload))

    result = await service.extract_insights("idea", Persona(name="Dana", company="Co"), "Dana: hi\nUser: hello")

    assert result == payload
    kwargs = service.client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4.1"
    assert kwargs["temperature"] == 0.3
    assert kwargs["response_format"] == {"type": "json_object"}
    assert "User: hello" in kwargs["messages"][1]["content"]


@pytest.mark.asyncio
async def test_extract_insights_rejects_prose_wrapped_json(service):
    payload = {"summary": {"whatWeLearned": "a", "whatToBuildNext": "b"}}
    service.client.chat.completions.create.return_value = _response(
        "Sure! Here are the insights:\n" + json.dumps(payload) + "\nHope this helps."
    )

    with pytest.raises(OpenAIServiceError):
        await service.extract_insights("idea", Persona(name="Dana", company="Co"), "Dana: hi\nUser: hello")


@pytest.mark.asyncio
async def test_guide_salvages_json_from_prose(service):
    service.client.chat.completions.create.return_value = _response(
        'Here is your guide:\n{"questions": [{"id": "q1", "text": "Hi?"}]}\nGood luck!'
    )

    payload = await service.generate_interview_guide("idea")

    assert payload["questions"] == [{"id": "q1", "text": "Hi?"}]


@pytest.mark.asyncio
async def test_extract_insights_rejects_non_object_json(service):
    service.client.chat.completions.create.return_value = _response("[1, 2, 3]")

    with pytest.raises(OpenAIServiceError):
        await service.extract_insights("idea", Persona(name="Dana", company="Co"), "transcript")


@pytest.mark.asyncio
async def test_guide_requires_questions_array(service):
    service.client.chat.completions.create.return_value = _response('{"questions": "none"}')

    with pytest.raises(OpenAIServiceError):
        await service.generate_interview_guide("idea")


def _rate_limit_error() -> RateLimitError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)


@pytest.mark.asyncio
async def test_single_attempt_surfaces_rate_limit(service):
    service.client.chat.completions.create.side_effect = _rate_limit_error()

    with pytest.raises(OpenAIServiceError):
        await service.generate_interview_guide("idea")
    assert service.client.chat.completions.create.await_count == 1


@pytest.mark.asyncio
async def test_retries_transient_errors_when_configured(service, monkeypatch):
    monkeypatch.setattr(asyncio, "sleep", AsyncMock())
    service.max_attempts = 2
    service.client.chat.completions.create.side_effect = [
        _rate_limit_error(),
        _response('{"questions": [{"text": "Hi?"}]}'),
    ]

    payload = await service.generate_interview_guide("idea")

    assert payload["questions"] == [{"text": "Hi?"}]
    assert service.client.chat.completions.create.await_count == 2
