from __future__ import annotations

import logging
from typing import Any

from .constants import (
    CLOSING_PHRASE,
    COMPLETION_MARKER,
    OPENING_LINE_TEMPLATE,
    ROLE_AGENT,
)
from .models import AgentReply, GuideQuestion, InterviewGuide, Persona, Project, Turn
from .openai_service import OpenAIService, OpenAIServiceError

logger = logging.getLogger(__name__)


class TurnGenerationError(RuntimeError):
    pass


class DialogueManager:
    def __init__(
        self,
        openai_service: OpenAIService,
        max_respondent_turns: int = 4,
        history_limit: int = 10,
    ) -> None:
        self.openai_service = openai_service
        self.max_respondent_turns = max_respondent_turns
        self.history_limit = history_limit

    @staticmethod
    def build_history_payload(turns: list[Turn], limit: int = 10) -> list[dict[str, str]]:
        payload: list[dict[str, str]] = []
        for turn in turns[-limit:]:
            payload.append(
                {
                    "role": "assistant" if turn.role == ROLE_AGENT else "user",
                    "content": turn.text,
                }
            )
        return payload

    @staticmethod
    def opening_line(project: Project, persona: Persona) -> str:
        if project.interview_guide is not None:
            first = project.interview_guide.first_question()
            if first:
                return first
        return OPENING_LINE_TEMPLATE.format(name=persona.name, title=project.title)

    @staticmethod
    def parse_reply(raw_text: str) -> AgentReply:
        concluding = COMPLETION_MARKER in raw_text
        text = raw_text.replace(COMPLETION_MARKER, "").strip()
        return AgentReply(text=text, concluding=concluding)

    @staticmethod
    def signals_completion(reply: AgentReply) -> bool:
        return reply.concluding or CLOSING_PHRASE in reply.text.lower()

    def should_conclude(self, respondent_turns: int, reply: AgentReply) -> bool:
        if respondent_turns >= self.max_respondent_turns:
            return True
        return self.signals_completion(reply)

    async def next_reply(
        self,
        product_idea: str,
        persona: Persona,
        history: list[Turn],
        user_response: str,
    ) -> AgentReply:
        payload = self.build_history_payload(history, limit=self.history_limit)
        try:
            raw_text = await self.openai_service.generate_interviewer_reply(
                product_idea=product_idea,
                persona=persona,
                history=payload,
                user_response=user_response,
            )
        except OpenAIServiceError as exc:
            raise TurnGenerationError(str(exc)) from exc

        reply = self.parse_reply(raw_text)
        if not reply.text:
            raise TurnGenerationError("Interviewer reply was empty")
        return reply

    async def generate_guide(self, product_idea: str) -> InterviewGuide:
        payload = await self.openai_service.generate_interview_guide(product_idea)

        questions: list[GuideQuestion] = []
        for idx, item in enumerate(payload.get("questions", []), start=1):
            if not isinstance(item, dict):
                continue
            text = str(item.get("text", "")).strip()
            if not text:
                continue
            questions.append(
                GuideQuestion(
                    id=str(item.get("id") or f"q{idx}"),
                    text=text,
                    type=str(item.get("type") or "open_ended"),
                )
            )

        if not questions:
            raise OpenAIServiceError("Generated guide has no usable questions")
        return InterviewGuide(questions=questions)

    @staticmethod
    def guide_preview(guide: InterviewGuide | None, limit: int = 7) -> list[dict[str, Any]]:
        if guide is None:
            return []
        return [{"id": q.id, "text": q.text} for q in guide.questions[:limit]]
