from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .constants import DEFAULT_COMPANY_NAME, DEFAULT_FOUNDER_NAME


@dataclass(slots=True)
class GuideQuestion:
    id: str
    text: str
    type: str


@dataclass(slots=True)
class InterviewGuide:
    questions: list[GuideQuestion] = field(default_factory=list)

    def first_question(self) -> str | None:
        for question in self.questions:
            if question.text.strip():
                return question.text.strip()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "questions": [
                {"id": q.id, "text": q.text, "type": q.type} for q in self.questions
            ]
        }


@dataclass(slots=True)
class Persona:
    name: str
    company: str


@dataclass(slots=True)
class Project:
    id: int
    owner_id: int
    title: str
    product_idea: str
    founder_name: str | None
    interview_guide: InterviewGuide | None
    created_at: str

    @property
    def idea_text(self) -> str:
        return self.product_idea.strip() or self.title

    def persona(self) -> Persona:
        return Persona(
            name=(self.founder_name or "").strip() or DEFAULT_FOUNDER_NAME,
            company=self.title.strip() or DEFAULT_COMPANY_NAME,
        )


@dataclass(slots=True)
class Session:
    id: int
    project_id: int
    respondent_id: int
    status: str
    started_at: str
    concluded_at: str | None


@dataclass(slots=True)
class Turn:
    id: int
    session_id: int
    sequence: int
    role: str
    text: str
    created_at: str


@dataclass(slots=True)
class AgentReply:
    text: str
    concluding: bool = False


@dataclass(slots=True)
class ExecutiveSummary:
    what_we_learned: str
    what_to_build_next: str


@dataclass(slots=True)
class PainPoint:
    point: str
    severity: str


@dataclass(slots=True)
class Quote:
    quote: str
    speaker: str
    sentiment: str


@dataclass(slots=True)
class Objection:
    objection: str
    type: str


@dataclass(slots=True)
class FeatureIdea:
    idea: str
    source: str


@dataclass(slots=True)
class InsightRecord:
    id: int
    session_id: int
    project_id: int
    owner_id: int
    summary: ExecutiveSummary
    pain_points: list[PainPoint]
    quotes: list[Quote]
    objections: list[Objection]
    feature_ideas: list[FeatureIdea]
    created_at: str
    project_title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "projectId": self.project_id,
            "projectTitle": self.project_title,
            "createdAt": self.created_at,
            "summary": {
                "whatWeLearned": self.summary.what_we_learned,
                "whatToBuildNext": self.summary.what_to_build_next,
            },
            "painPoints": [{"point": p.point, "severity": p.severity} for p in self.pain_points],
            "quotes": [
                {"quote": q.quote, "speaker": q.speaker, "sentiment": q.sentiment}
                for q in self.quotes
            ],
            "objections": [{"objection": o.objection, "type": o.type} for o in self.objections],
            "featureIdeas": [{"idea": f.idea, "source": f.source} for f in self.feature_ideas],
        }


@dataclass(slots=True)
class ReplyOutcome:
    session: Session
    respondent_turn: Turn
    agent_turn: Turn
    concluded: bool = False
    recovered: bool = False
    insight: InsightRecord | None = None
    extraction_error: Exception | None = None


@dataclass(slots=True)
class RankedItem:
    text: str
    responses: int
    frequency: float


@dataclass(slots=True)
class SampledQuote:
    quote: str
    speaker: str
    sentiment: str
    project_title: str


@dataclass(slots=True)
class KeyInsight:
    title: str
    project_title: str


@dataclass(slots=True)
class OverviewCounters:
    total_interviews: int
    project_count: int
    top_pain_point: str
    key_insight: str


@dataclass(slots=True)
class AggregateView:
    pain_points: list[RankedItem]
    feature_requests: list[RankedItem]
    quotes: list[SampledQuote]
    learned: list[str]
    build_next: list[str]
    key_insights: list[KeyInsight]
    overview: OverviewCounters


@dataclass(slots=True)
class ReportArtifacts:
    report_json: dict[str, Any]
    markdown: str
    export_path: str
    generated_at: datetime
