from __future__ import annotations

import pytest

from insight_bot.constants import ROLE_AGENT, ROLE_RESPONDENT
from insight_bot.dialogue import DialogueManager, TurnGenerationError
from insight_bot.models import AgentReply, GuideQuestion, InterviewGuide, Persona, Turn
from insight_bot.openai_service import OpenAIServiceError


def _turn(sequence: int, role: str, text: str) -> Turn:
    return Turn(id=sequence, session_id=1, sequence=sequence, role=role, text=text, created_at="")


def test_history_payload_maps_roles_and_keeps_latest_turns():
    turns = [
        _turn(i, ROLE_AGENT if i % 2 else ROLE_RESPONDENT, f"turn {i}")
        for i in range(1, 8)
    ]

    payload = DialogueManager.build_history_payload(turns, limit=4)

    assert payload == [
        {"role": "user", "content": "turn 4"},
        {"role": "assistant", "content": "turn 5"},
        {"role": "user", "content": "turn 6"},
        {"role": "assistant", "content": "turn 7"},
    ]


def test_parse_reply_strips_completion_marker():
    reply = DialogueManager.parse_reply("Thanks so much! [INTERVIEW_COMPLETE]")

    assert reply == AgentReply(text="Thanks so much!", concluding=True)
    assert DialogueManager.parse_reply("What else?") == AgentReply(text="What else?", concluding=False)


@pytest.mark.parametrize(
    ("respondent_turns", "text", "expected"),
    [
        (1, "What do you use today?", False),
        (3, "What do you use today?", False),
        (4, "What do you use today?", True),
        (5, "What do you use today?", True),
        (1, "Okay, Thank You For Your Time!", True),
        (2, "thank you for your time", True),
        (2, "Thank you for sharing that.", False),
    ],
)
def test_should_conclude(dialogue, respondent_turns, text, expected):
    assert dialogue.should_conclude(respondent_turns, AgentReply(text=text)) is expected


def test_should_conclude_on_structured_signal(dialogue):
    assert dialogue.should_conclude(1, AgentReply(text="Cheers!", concluding=True)) is True


def test_opening_line_falls_back_to_template(project):
    line = DialogueManager.opening_line(project, Persona(name="Dana", company="Meal-planning app"))

    assert line.startswith("Hi there! I'm Dana")
    assert "Meal-planning app" in line


def test_opening_line_skips_blank_guide_questions(project):
    project.interview_guide = InterviewGuide(
        questions=[
            GuideQuestion(id="q1", text="   ", type="open_ended"),
            GuideQuestion(id="q2", text="When did you last plan a week of meals?", type="open_ended"),
        ]
    )

    assert DialogueManager.opening_line(project, project.persona()) == "When did you last plan a week of meals?"


@pytest.mark.asyncio
async def test_next_reply_sends_trimmed_history(openai_service):
    manager = DialogueManager(openai_service=openai_service, history_limit=2)
    history = [_turn(1, ROLE_AGENT, "a"), _turn(2, ROLE_RESPONDENT, "b"), _turn(3, ROLE_AGENT, "c")]

    reply = await manager.next_reply("idea", Persona(name="Dana", company="Co"), history, "d")

    assert reply.text == "Interesting. What did you try before?"
    kwargs = openai_service.generate_interviewer_reply.await_args.kwargs
    assert kwargs["history"] == [
        {"role": "user", "content": "b"},
        {"role": "assistant", "content": "c"},
    ]


@pytest.mark.asyncio
async def test_next_reply_wraps_service_errors(dialogue, openai_service):
    openai_service.generate_interviewer_reply.side_effect = OpenAIServiceError("rate limited")

    with pytest.raises(TurnGenerationError):
        await dialogue.next_reply("idea", Persona(name="Dana", company="Co"), [], "hello")


@pytest.mark.asyncio
async def test_next_reply_rejects_marker_only_output(dialogue, openai_service):
    openai_service.generate_interviewer_reply.return_value = "[INTERVIEW_COMPLETE]"

    with pytest.raises(TurnGenerationError):
        await dialogue.next_reply("idea", Persona(name="Dana", company="Co"), [], "hello")


@pytest.mark.asyncio
async def test_generate_guide_keeps_usable_questions(dialogue, openai_service):
    openai_service.generate_interview_guide.return_value = {
        "questions": [
            {"text": "Tell me about your week."},
            {"id": "q2", "text": "", "type": "pain_discovery"},
            "not a question",
            {"id": "q9", "text": "Anything else?", "type": "closing"},
        ]
    }

    guide = await dialogue.generate_guide("Meal-planning app")

    assert [(q.id, q.text, q.type) for q in guide.questions] == [
        ("q1", "Tell me about your week.", "open_ended"),
        ("q9", "Anything else?", "closing"),
    ]
    assert DialogueManager.guide_preview(guide, limit=1) == [{"id": "q1", "text": "Tell me about your week."}]


@pytest.mark.asyncio
async def test_generate_guide_without_questions_raises(dialogue, openai_service):
    openai_service.generate_interview_guide.return_value = {"questions": [{"text": " "}]}

    with pytest.raises(OpenAIServiceError):
        await dialogue.generate_guide("Meal-planning app")
