from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import AggregateView, InsightRecord, ReportArtifacts


class ReportBuilder:
    def __init__(self, exports_dir: Path) -> None:
        self.exports_dir = exports_dir

    @staticmethod
    def _clip(text: str, max_chars: int = 140) -> str:
        compact = " ".join(text.strip().split())
        if len(compact) <= max_chars:
            return compact
        return compact[: max_chars - 1].rstrip() + "…"

    def build_insight_markdown(self, record: InsightRecord) -> str:
        lines: list[str] = []
        lines.append("## Interview insights")
        if record.project_title:
            lines.append(f"_Project: {record.project_title}_")
        lines.append("")

        lines.append("### What we learned")
        lines.append(record.summary.what_we_learned or "No summary available.")
        lines.append("")
        lines.append("### What to build next")
        lines.append(record.summary.what_to_build_next or "No recommendation available.")
        lines.append("")

        lines.append("### Pain points")
        if record.pain_points:
            for pain in record.pain_points:
                lines.append(f"- {pain.point} ({pain.severity})")
        else:
            lines.append("- None identified.")
        lines.append("")

        if record.quotes:
            lines.append("### Notable quotes")
            for quote in record.quotes:
                lines.append(f"- \"{self._clip(quote.quote)}\" ({quote.speaker}, {quote.sentiment})")
            lines.append("")

        if record.objections:
            lines.append("### Objections")
            for objection in record.objections:
                lines.append(f"- {objection.objection} [{objection.type}]")
            lines.append("")

        if record.feature_ideas:
            lines.append("### Feature ideas")
            for idea in record.feature_ideas:
                lines.append(f"- {idea.idea} ({idea.source})")
            lines.append("")

        return "\n".join(lines).strip()

    def build_analytics_markdown(self, view: AggregateView) -> str:
        overview = view.overview
        lines: list[str] = []
        lines.append("## Analytics")
        lines.append("")
        lines.append(f"**Total interviews:** {overview.total_interviews}")
        lines.append(f"**Projects:** {overview.project_count}")
        lines.append(f"**Top pain point:** {overview.top_pain_point}")
        lines.append(f"**Key insight:** {overview.key_insight}")

        if overview.total_interviews == 0:
            lines.append("")
            lines.append("_No completed interviews yet. Share an interview link to start collecting insights._")
            return "\n".join(lines).strip()

        lines.append("")
        lines.append("### What we learned")
        for item in view.learned:
            lines.append(f"- {item}")
        lines.append("")
        lines.append("### What to build next")
        for item in view.build_next:
            lines.append(f"- {item}")
        lines.append("")

        lines.append("### Top pain points")
        if view.pain_points:
            for ranked in view.pain_points:
                lines.append(f"- {ranked.text}: {ranked.responses} ({ranked.frequency:.0f}%)")
        else:
            lines.append("- None yet.")
        lines.append("")

        lines.append("### Top feature requests")
        if view.feature_requests:
            for ranked in view.feature_requests:
                lines.append(f"- {ranked.text}: {ranked.responses} ({ranked.frequency:.0f}%)")
        else:
            lines.append("- None yet.")
        lines.append("")

        if view.quotes:
            lines.append("### Voices")
            for quote in view.quotes:
                lines.append(f"- \"{self._clip(quote.quote)}\" ({quote.project_title})")
            lines.append("")

        if view.key_insights:
            lines.append("### Recent insights")
            for insight in view.key_insights:
                lines.append(f"- {insight.title} ({insight.project_title})")
            lines.append("")

        return "\n".join(lines).strip()

    @staticmethod
    def build_report_json(owner_id: int, view: AggregateView) -> dict[str, Any]:
        return {
            "version": "1.0",
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "owner_id": owner_id,
            "overview": {
                "totalInterviews": view.overview.total_interviews,
                "projectCount": view.overview.project_count,
                "topPainPoint": view.overview.top_pain_point,
                "keyInsight": view.overview.key_insight,
            },
            "executiveSummary": {"learned": view.learned, "build": view.build_next},
            "painPoints": [
                {"point": r.text, "responses": r.responses, "frequency": r.frequency}
                for r in view.pain_points
            ],
            "featureRequests": [
                {"feature": r.text, "responses": r.responses, "frequency": r.frequency}
                for r in view.feature_requests
            ],
            "quotes": [
                {
                    "quote": q.quote,
                    "speaker": q.speaker,
                    "sentiment": q.sentiment,
                    "projectTitle": q.project_title,
                }
                for q in view.quotes
            ],
            "keyInsights": [
                {"title": k.title, "project": k.project_title} for k in view.key_insights
            ],
        }

    def _write_json(self, filename: str, payload: dict[str, Any]) -> Path:
        self.exports_dir.mkdir(parents=True, exist_ok=True)
        export_path = self.exports_dir / filename
        with export_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=True)
        return export_path

    def export_insight(self, record: InsightRecord) -> ReportArtifacts:
        generated_at = datetime.now(timezone.utc)
        timestamp = generated_at.strftime("%Y%m%d_%H%M%S")

        report_json = {
            "version": "1.0",
            "generated_at": generated_at.isoformat(),
            "insight": record.to_dict(),
        }
        export_path = self._write_json(f"insight_{record.session_id}_{timestamp}.json", report_json)

        return ReportArtifacts(
            report_json=report_json,
            markdown=self.build_insight_markdown(record),
            export_path=str(export_path),
            generated_at=generated_at,
        )

    def export_report(self, owner_id: int, view: AggregateView) -> ReportArtifacts:
        generated_at = datetime.now(timezone.utc)
        timestamp = generated_at.strftime("%Y%m%d_%H%M%S")
        report_json = self.build_report_json(owner_id, view)
        markdown = self.build_analytics_markdown(view)
        export_path = self._write_json(f"analytics_{owner_id}_{timestamp}.json", report_json)

        return ReportArtifacts(
            report_json=report_json,
            markdown=markdown,
            export_path=str(export_path),
            generated_at=generated_at,
        )
