from __future__ import annotations

import logging
from typing import Any

from .constants import (
    INSIGHT_ITEM_FIELDS,
    INSIGHT_KEYS,
    INSIGHT_LIST_LIMITS,
    ROLE_AGENT,
    STATUS_CONCLUDED,
)
from .database import Database
from .models import InsightRecord, Persona, Session, Turn
from .openai_service import OpenAIService, OpenAIServiceError

logger = logging.getLogger(__name__)


class ExtractionError(RuntimeError):
    pass


class InsightExtractor:
    """Turns a concluded interview transcript into one stored insight record."""

    def __init__(self, db: Database, openai_service: OpenAIService) -> None:
        self.db = db
        self.openai_service = openai_service

    @staticmethod
    def render_transcript(turns: list[Turn], persona: Persona) -> str:
        lines = []
        for turn in turns:
            speaker = persona.name if turn.role == ROLE_AGENT else "User"
            lines.append(f"{speaker}: {turn.text}")
        return "\n".join(lines)

    @staticmethod
    def _validate_items(key: str, raw: Any) -> list[dict[str, str]]:
        if not isinstance(raw, list):
            raise ExtractionError(f"'{key}' must be a list")

        fields = INSIGHT_ITEM_FIELDS[key]
        items: list[dict[str, str]] = []
        for idx, entry in enumerate(raw):
            if not isinstance(entry, dict):
                raise ExtractionError(f"'{key}[{idx}]' must be an object")
            item: dict[str, str] = {}
            for field_name in fields:
                value = entry.get(field_name)
                if not isinstance(value, str):
                    raise ExtractionError(f"'{key}[{idx}].{field_name}' must be a string")
                item[field_name] = value.strip()
            if not item[fields[0]]:
                raise ExtractionError(f"'{key}[{idx}].{fields[0]}' must not be empty")
            items.append(item)

        limit = INSIGHT_LIST_LIMITS[key]
        if len(items) > limit:
            logger.warning("Truncating '%s' from %s to %s items", key, len(items), limit)
        return items[:limit]

    @classmethod
    def validate_payload(cls, payload: Any) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise ExtractionError("Insight payload must be a JSON object")

        missing = [key for key in INSIGHT_KEYS if key not in payload]
        if missing:
            raise ExtractionError(f"Insight payload missing keys: {', '.join(missing)}")
        extra = [key for key in payload if key not in INSIGHT_KEYS]
        if extra:
            raise ExtractionError(f"Insight payload has unexpected keys: {', '.join(extra)}")

        summary = payload["summary"]
        if not isinstance(summary, dict):
            raise ExtractionError("'summary' must be an object")
        cleaned_summary: dict[str, str] = {}
        for field_name in ("whatWeLearned", "whatToBuildNext"):
            value = summary.get(field_name)
            if not isinstance(value, str):
                raise ExtractionError(f"'summary.{field_name}' must be a string")
            cleaned_summary[field_name] = value.strip()

        cleaned: dict[str, Any] = {"summary": cleaned_summary}
        for key in INSIGHT_ITEM_FIELDS:
            cleaned[key] = cls._validate_items(key, payload[key])
        return cleaned

    async def process_session(self, session: Session) -> InsightRecord:
        if session.status != STATUS_CONCLUDED:
            raise ExtractionError(f"Session {session.id} is not concluded")

        existing = self.db.get_insight_for_session(session.id)
        if existing is not None:
            return existing

        project = self.db.get_project(session.project_id)
        if project is None:
            raise ExtractionError(f"Project {session.project_id} not found")

        turns = self.db.list_turns(session.id)
        if not turns:
            raise ExtractionError(f"Session {session.id} has no transcript")

        persona = project.persona()
        try:
            raw_payload = await self.openai_service.extract_insights(
                product_idea=project.idea_text,
                persona=persona,
                transcript_text=self.render_transcript(turns, persona),
            )
        except OpenAIServiceError as exc:
            raise ExtractionError(f"Insight generation failed: {exc}") from exc

        payload = self.validate_payload(raw_payload)

        record, created = self.db.insert_insight(
            session_id=session.id,
            project_id=project.id,
            owner_id=project.owner_id,
            payload=payload,
        )
        if created:
            logger.info("Stored insight record %s for session %s", record.id, session.id)
        else:
            logger.info("Insight record for session %s already existed", session.id)
        return record
