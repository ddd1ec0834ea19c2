from __future__ import annotations

import pytest

from conftest import make_insight_payload
from insight_bot.constants import ROLE_AGENT, ROLE_RESPONDENT, STATUS_CONCLUDED, STATUS_IN_PROGRESS, STATUS_NOT_STARTED
from insight_bot.extraction import ExtractionError, InsightExtractor
from insight_bot.models import Persona
from insight_bot.openai_service import OpenAIServiceError


def _concluded_session(db, project):
    session = db.create_session(project_id=project.id, respondent_id=5)
    db.append_turn(session.id, role=ROLE_AGENT, text="Hi, I'm Dana. How do you plan meals?")
    db.append_turn(session.id, role=ROLE_RESPONDENT, text="Badly, on Sunday nights.")
    db.transition_status(session.id, STATUS_NOT_STARTED, STATUS_IN_PROGRESS)
    db.transition_status(session.id, STATUS_IN_PROGRESS, STATUS_CONCLUDED)
    return db.get_session(session.id)


def test_render_transcript_labels_speakers(db, project):
    session = _concluded_session(db, project)

    text = InsightExtractor.render_transcript(db.list_turns(session.id), Persona(name="Dana", company="Co"))

    assert text == "Dana: Hi, I'm Dana. How do you plan meals?\nUser: Badly, on Sunday nights."


def test_validate_payload_accepts_well_formed_payload():
    cleaned = InsightExtractor.validate_payload(make_insight_payload())

    assert cleaned["summary"]["whatToBuildNext"] == "A mid-week re-plan that uses leftovers."
    assert [p["point"] for p in cleaned["painPoints"]] == ["Planning takes too long", "Groceries go to waste"]


def test_validate_payload_truncates_long_lists():
    payload = make_insight_payload(
        objections=[{"objection": f"objection {i}", "type": "price"} for i in range(6)],
    )

    cleaned = InsightExtractor.validate_payload(payload)

    assert len(cleaned["objections"]) == 3


@pytest.mark.parametrize(
    "payload",
    [
        ["not", "an", "object"],
        {k: v for k, v in make_insight_payload().items() if k != "quotes"},
        make_insight_payload(confidence=0.9),
        make_insight_payload(summary="flat text"),
        make_insight_payload(summary={"whatWeLearned": "x"}),
        make_insight_payload(painPoints={"point": "x", "severity": "high"}),
        make_insight_payload(painPoints=[{"point": "x"}]),
        make_insight_payload(quotes=[{"quote": 42, "speaker": "User", "sentiment": "neutral"}]),
        make_insight_payload(featureIdeas=[{"idea": "  ", "source": "implied_need"}]),
        make_insight_payload(objections=["price"]),
    ],
)
def test_validate_payload_rejects_malformed_payloads(payload):
    with pytest.raises(ExtractionError):
        InsightExtractor.validate_payload(payload)


@pytest.mark.asyncio
async def test_process_session_stores_one_record(db, project, extractor, openai_service):
    session = _concluded_session(db, project)

    record = await extractor.process_session(session)
    again = await extractor.process_session(session)

    assert again.id == record.id
    assert openai_service.extract_insights.await_count == 1
    kwargs = openai_service.extract_insights.await_args.kwargs
    assert kwargs["product_idea"] == "Meal-planning app"
    assert "User: Badly, on Sunday nights." in kwargs["transcript_text"]


@pytest.mark.asyncio
async def test_process_session_requires_concluded_session(db, project, extractor, openai_service):
    session = db.create_session(project_id=project.id, respondent_id=5)

    with pytest.raises(ExtractionError):
        await extractor.process_session(session)
    openai_service.extract_insights.assert_not_awaited()


@pytest.mark.asyncio
async def test_process_session_rejects_empty_transcript(db, project, extractor):
    session = db.create_session(project_id=project.id, respondent_id=5)
    db.transition_status(session.id, STATUS_NOT_STARTED, STATUS_IN_PROGRESS)
    db.transition_status(session.id, STATUS_IN_PROGRESS, STATUS_CONCLUDED)

    with pytest.raises(ExtractionError):
        await extractor.process_session(db.get_session(session.id))


@pytest.mark.asyncio
async def test_failed_extraction_stores_nothing(db, project, extractor, openai_service):
    session = _concluded_session(db, project)
    openai_service.extract_insights.side_effect = OpenAIServiceError("timeout")

    with pytest.raises(ExtractionError):
        await extractor.process_session(session)

    openai_service.extract_insights.side_effect = None
    openai_service.extract_insights.return_value = make_insight_payload(featureIdeas="nope")
    with pytest.raises(ExtractionError):
        await extractor.process_session(session)

    assert db.get_insight_for_session(session.id) is None
    assert db.list_insights(project.owner_id) == []
