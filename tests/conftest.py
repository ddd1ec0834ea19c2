from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from insight_bot.database import Database
from insight_bot.dialogue import DialogueManager
from insight_bot.extraction import InsightExtractor
from insight_bot.openai_service import OpenAIService
from insight_bot.session import InterviewSession


def make_insight_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "summary": {
            "whatWeLearned": "Busy parents plan meals on Sunday and give up by Wednesday.",
            "whatToBuildNext": "A mid-week re-plan that uses leftovers.",
        },
        "painPoints": [
            {"point": "Planning takes too long", "severity": "high"},
            {"point": "Groceries go to waste", "severity": "medium"},
        ],
        "quotes": [
            {"quote": "I throw away half the spinach every week.", "speaker": "User", "sentiment": "frustrated"},
        ],
        "objections": [
            {"objection": "Another subscription", "type": "price"},
        ],
        "featureIdeas": [
            {"idea": "Leftover-based recipes", "source": "implied_need"},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def db(tmp_path) -> Database:
    database = Database(tmp_path / "test.db")
    database.init()
    return database


@pytest.fixture
def openai_service() -> AsyncMock:
    service = AsyncMock(spec=OpenAIService)
    service.generate_interviewer_reply.return_value = "Interesting. What did you try before?"
    service.extract_insights.return_value = make_insight_payload()
    return service


@pytest.fixture
def dialogue(openai_service) -> DialogueManager:
    return DialogueManager(openai_service=openai_service, max_respondent_turns=4, history_limit=10)


@pytest.fixture
def extractor(db, openai_service) -> InsightExtractor:
    return InsightExtractor(db=db, openai_service=openai_service)


@pytest.fixture
def sessions(db, dialogue, extractor) -> InterviewSession:
    return InterviewSession(db=db, dialogue=dialogue, extractor=extractor)


@pytest.fixture
def project(db):
    return db.create_project(
        owner_id=100,
        title="Meal-planning app",
        product_idea="Meal-planning app",
        founder_name="Dana",
    )
