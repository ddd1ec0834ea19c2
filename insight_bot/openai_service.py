from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from openai import APIError, APITimeoutError, AsyncOpenAI, RateLimitError

from .constants import COMPLETION_MARKER, INSIGHT_LIST_LIMITS
from .models import Persona

logger = logging.getLogger(__name__)

REPLY_TEMPERATURE = 0.7
REPLY_MAX_TOKENS = 150
GUIDE_TEMPERATURE = 0.5
GUIDE_MAX_TOKENS = 1000
INSIGHTS_TEMPERATURE = 0.3
INSIGHTS_MAX_TOKENS = 2000


class OpenAIServiceError(RuntimeError):
    pass


class OpenAIService:
    def __init__(
        self,
        api_key: str,
        model: str,
        insights_model: str | None = None,
        max_attempts: int = 1,
    ) -> None:
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self.insights_model = insights_model or model
        self.max_attempts = max(1, max_attempts)

    async def _chat_create_with_retry(self, **kwargs: Any) -> Any:
        delay = 1.0
        last_error: Exception | None = None

        for attempt in range(self.max_attempts):
            is_last = attempt == self.max_attempts - 1
            try:
                return await self.client.chat.completions.create(**kwargs)
            except (RateLimitError, APITimeoutError) as exc:
                last_error = exc
                if is_last:
                    break
                logger.warning(
                    "OpenAI transient error (%s), retry %s/%s",
                    exc.__class__.__name__,
                    attempt + 1,
                    self.max_attempts,
                )
                await asyncio.sleep(delay)
                delay *= 2
            except APIError as exc:
                last_error = exc
                retriable = getattr(exc, "status_code", 500) >= 500
                if not retriable or is_last:
                    break
                logger.warning("OpenAI APIError retry %s/%s: %s", attempt + 1, self.max_attempts, exc)
                await asyncio.sleep(delay)
                delay *= 2

        raise OpenAIServiceError(f"OpenAI request failed: {last_error}")

    @staticmethod
    def _extract_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if isinstance(content, str):
            return content.strip()
        return ""

    @staticmethod
    def _extract_json(raw_text: str, salvage: bool = True) -> dict[str, Any]:
        raw_text = raw_text.strip()
        try:
            payload = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            if not salvage:
                raise OpenAIServiceError(f"Model output was not valid JSON: {exc}") from exc
            match = re.search(r"\{.*\}", raw_text, re.DOTALL)
            if not match:
                raise OpenAIServiceError("Model output was not valid JSON")
            try:
                payload = json.loads(match.group(0))
            except json.JSONDecodeError as exc:
                raise OpenAIServiceError(f"Model output JSON parse failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise OpenAIServiceError("Model output JSON must be an object")
        return payload

    async def generate_interviewer_reply(
        self,
        product_idea: str,
        persona: Persona,
        history: list[dict[str, str]],
        user_response: str,
    ) -> str:
        system_prompt = (
            f"You are {persona.name} of {persona.company} conducting a customer interview about: "
            f"{product_idea}. Be conversational, empathetic, and ask insightful follow-up questions. "
            "Ask one question at a time. When you have learned enough and are wrapping up, thank the "
            f"interviewee for their time and end your message with {COMPLETION_MARKER}."
        )

        messages: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]
        messages.extend(history)
        messages.append({"role": "user", "content": user_response})

        response = await self._chat_create_with_retry(
            model=self.model,
            messages=messages,
            temperature=REPLY_TEMPERATURE,
            max_tokens=REPLY_MAX_TOKENS,
            # Keep the model from writing the interviewee's side of the conversation.
            stop=["\nUser:", f"\n{persona.name}:"],
        )

        text = self._extract_text(response)
        if not text:
            raise OpenAIServiceError("Model returned an empty reply")
        return text

    async def generate_interview_guide(self, product_idea: str) -> dict[str, Any]:
        system_prompt = "You are an expert interview guide designer. Output JSON only."

        user_prompt = (
            "You are an expert customer interview designer.\n"
            "A founder wants to validate the following product idea and goals:\n"
            "--- PRODUCT IDEA & GOALS ---\n"
            f"{product_idea}\n"
            "--- END PRODUCT IDEA & GOALS ---\n\n"
            'Generate a structured interview guide as a JSON object with a top-level key "questions": '
            "an array of 5-7 objects, each with \"id\" (e.g. \"q1\"), \"text\" (the full question) and "
            '"type" (one of "open_ended", "pain_discovery", "solution_probing", "closing").\n'
            "The first question should be a warm, open-ended icebreaker. Subsequent questions should dig "
            "into pain points, current solutions and desired outcomes. The final question should be a "
            "polite closing question. Output a valid JSON object only."
        )

        response = await self._chat_create_with_retry(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=GUIDE_TEMPERATURE,
            max_tokens=GUIDE_MAX_TOKENS,
            response_format={"type": "json_object"},
        )

        raw_text = self._extract_text(response)
        if not raw_text:
            raise OpenAIServiceError("Model returned an empty interview guide")

        payload = self._extract_json(raw_text)
        if not isinstance(payload.get("questions"), list):
            raise OpenAIServiceError("Generated guide is missing 'questions' array")
        return payload

    async def extract_insights(
        self,
        product_idea: str,
        persona: Persona,
        transcript_text: str,
    ) -> dict[str, Any]:
        system_prompt = (
            "You are an expert product analyst. Your task is to analyze an interview transcript and "
            "provide structured insights in JSON format based on the user's instructions."
        )

        user_prompt = (
            "You are an expert product manager analyzing a customer interview transcript.\n"
            f"The interview was conducted by {persona.name} of {persona.company} "
            f'to validate the product idea: "{product_idea}".\n\n'
            "Here is the full conversation transcript:\n"
            "--- START TRANSCRIPT ---\n"
            f"{transcript_text}\n"
            "--- END TRANSCRIPT ---\n\n"
            "Return a JSON object with exactly these top-level keys:\n"
            '- "summary": an object with string properties "whatWeLearned" and "whatToBuildNext".\n'
            '- "painPoints": array of {"point", "severity"} (severity: "high", "medium" or "low"). '
            f"Up to {INSIGHT_LIST_LIMITS['painPoints']} items.\n"
            '- "quotes": array of {"quote", "speaker", "sentiment"} (speaker: "User" or "Founder"; '
            'sentiment e.g. "positive", "negative", "neutral", "frustrated", "excited"). '
            f"Up to {INSIGHT_LIST_LIMITS['quotes']} items.\n"
            '- "objections": array of {"objection", "type"} (type e.g. "price", "feature_missing", '
            f'"complexity", "trust"). Up to {INSIGHT_LIST_LIMITS["objections"]} items.\n'
            '- "featureIdeas": array of {"idea", "source"} (source: "direct_suggestion" or '
            f'"implied_need"). Up to {INSIGHT_LIST_LIMITS["featureIdeas"]} items.\n\n'
            "Output the JSON object only. Focus on actionable insights. Be concise and specific."
        )

        response = await self._chat_create_with_retry(
            model=self.insights_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=INSIGHTS_TEMPERATURE,
            max_tokens=INSIGHTS_MAX_TOKENS,
            response_format={"type": "json_object"},
        )

        raw_text = self._extract_text(response)
        if not raw_text:
            raise OpenAIServiceError("Model returned an empty insights payload")
        return self._extract_json(raw_text, salvage=False)
