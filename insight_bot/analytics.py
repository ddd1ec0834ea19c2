from __future__ import annotations

import logging
import sqlite3
from typing import Iterable

from .constants import (
    KEY_INSIGHT_LIMIT,
    KEY_INSIGHT_TITLE_CHARS,
    NOT_AVAILABLE,
    OVERVIEW_INSIGHT_CHARS,
    QUOTE_SAMPLE_LIMIT,
    SUMMARY_ROLLUP_LIMIT,
    TOP_RANKED_LIMIT,
    UNKNOWN_PROJECT_TITLE,
)
from .database import Database
from .models import (
    AggregateView,
    InsightRecord,
    KeyInsight,
    OverviewCounters,
    RankedItem,
    SampledQuote,
)

logger = logging.getLogger(__name__)


class AggregationError(RuntimeError):
    pass


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


class InsightAggregator:
    """Cross-interview statistics over insight records read newest-first."""

    @staticmethod
    def rank(texts: Iterable[str], total_records: int, limit: int = TOP_RANKED_LIMIT) -> list[RankedItem]:
        # dict keeps first-seen order, and sorted() is stable, so ties stay in that order.
        counts: dict[str, int] = {}
        for text in texts:
            if text:
                counts[text] = counts.get(text, 0) + 1

        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return [
            RankedItem(
                text=text,
                responses=count,
                frequency=(count / total_records) * 100 if total_records else 0.0,
            )
            for text, count in ranked[:limit]
        ]

    def rank_pain_points(self, records: list[InsightRecord]) -> list[RankedItem]:
        return self.rank(
            (p.point for r in records for p in r.pain_points),
            total_records=len(records),
        )

    def rank_feature_requests(self, records: list[InsightRecord]) -> list[RankedItem]:
        return self.rank(
            (f.idea for r in records for f in r.feature_ideas),
            total_records=len(records),
        )

    @staticmethod
    def summary_rollup(records: list[InsightRecord]) -> tuple[list[str], list[str]]:
        learned = [r.summary.what_we_learned for r in records if r.summary.what_we_learned]
        build_next = [r.summary.what_to_build_next for r in records if r.summary.what_to_build_next]
        return learned[:SUMMARY_ROLLUP_LIMIT], build_next[:SUMMARY_ROLLUP_LIMIT]

    @staticmethod
    def sample_quotes(records: list[InsightRecord]) -> list[SampledQuote]:
        quotes: list[SampledQuote] = []
        for record in records:
            for quote in record.quotes:
                if not quote.quote:
                    continue
                quotes.append(
                    SampledQuote(
                        quote=quote.quote,
                        speaker=quote.speaker,
                        sentiment=quote.sentiment,
                        project_title=record.project_title or UNKNOWN_PROJECT_TITLE,
                    )
                )
        return quotes[:QUOTE_SAMPLE_LIMIT]

    @staticmethod
    def key_insights(records: list[InsightRecord]) -> list[KeyInsight]:
        insights: list[KeyInsight] = []
        for record in records[:KEY_INSIGHT_LIMIT]:
            learned = record.summary.what_we_learned
            if not learned:
                continue
            insights.append(
                KeyInsight(
                    title=_truncate(learned, KEY_INSIGHT_TITLE_CHARS),
                    project_title=record.project_title or NOT_AVAILABLE,
                )
            )
        return insights

    def aggregate(self, records: list[InsightRecord]) -> AggregateView:
        if not records:
            return AggregateView(
                pain_points=[],
                feature_requests=[],
                quotes=[],
                learned=[],
                build_next=[],
                key_insights=[],
                overview=OverviewCounters(
                    total_interviews=0,
                    project_count=0,
                    top_pain_point=NOT_AVAILABLE,
                    key_insight=NOT_AVAILABLE,
                ),
            )

        pain_points = self.rank_pain_points(records)
        learned, build_next = self.summary_rollup(records)

        overview = OverviewCounters(
            total_interviews=len(records),
            project_count=len({r.project_id for r in records}),
            top_pain_point=pain_points[0].text if pain_points else NOT_AVAILABLE,
            key_insight=_truncate(learned[0], OVERVIEW_INSIGHT_CHARS) if learned else NOT_AVAILABLE,
        )

        return AggregateView(
            pain_points=pain_points,
            feature_requests=self.rank_feature_requests(records),
            quotes=self.sample_quotes(records),
            learned=learned,
            build_next=build_next,
            key_insights=self.key_insights(records),
            overview=overview,
        )


class AnalyticsService:
    def __init__(self, db: Database, aggregator: InsightAggregator | None = None) -> None:
        self.db = db
        self.aggregator = aggregator or InsightAggregator()

    def build_view(self, owner_id: int) -> AggregateView:
        try:
            records = self.db.list_insights(owner_id)
        except (sqlite3.Error, ValueError, TypeError) as exc:
            logger.error("Failed to load insight records for owner %s: %s", owner_id, exc)
            raise AggregationError(f"Could not load insight records: {exc}") from exc

        logger.debug("Aggregating %s insight records for owner %s", len(records), owner_id)
        return self.aggregator.aggregate(records)
