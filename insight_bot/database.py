from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from .constants import ROLE_RESPONDENT, STATUS_CONCLUDED, STATUS_IN_PROGRESS, STATUS_NOT_STARTED
from .models import (
    ExecutiveSummary,
    FeatureIdea,
    GuideQuestion,
    InsightRecord,
    InterviewGuide,
    Objection,
    PainPoint,
    Project,
    Quote,
    Session,
    Turn,
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def init(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    product_idea TEXT NOT NULL DEFAULT '',
                    founder_name TEXT,
                    interview_guide_json TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_projects_owner
                    ON projects (owner_id);

                CREATE TABLE IF NOT EXISTS sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    project_id INTEGER NOT NULL,
                    respondent_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    concluded_at TEXT,
                    FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_respondent_status
                    ON sessions (respondent_id, status);

                CREATE TABLE IF NOT EXISTS turns (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id INTEGER NOT NULL,
                    sequence INTEGER NOT NULL,
                    role TEXT NOT NULL,
                    text TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_turns_session_sequence
                    ON turns (session_id, sequence);

                CREATE TABLE IF NOT EXISTS insights (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id INTEGER NOT NULL UNIQUE,
                    project_id INTEGER NOT NULL,
                    owner_id INTEGER NOT NULL,
                    summary_json TEXT NOT NULL,
                    pain_points_json TEXT NOT NULL,
                    quotes_json TEXT NOT NULL,
                    objections_json TEXT NOT NULL,
                    feature_ideas_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE,
                    FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_insights_owner_created
                    ON insights (owner_id, created_at);
                """
            )

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        guide: InterviewGuide | None = None
        raw_guide = row["interview_guide_json"]
        if raw_guide:
            payload = json.loads(raw_guide)
            guide = InterviewGuide(
                questions=[
                    GuideQuestion(
                        id=str(q.get("id", "")),
                        text=str(q.get("text", "")),
                        type=str(q.get("type", "")),
                    )
                    for q in payload.get("questions", [])
                    if isinstance(q, dict)
                ]
            )
        return Project(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            product_idea=row["product_idea"],
            founder_name=row["founder_name"],
            interview_guide=guide,
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            project_id=row["project_id"],
            respondent_id=row["respondent_id"],
            status=row["status"],
            started_at=row["started_at"],
            concluded_at=row["concluded_at"],
        )

    @staticmethod
    def _row_to_turn(row: sqlite3.Row) -> Turn:
        return Turn(
            id=row["id"],
            session_id=row["session_id"],
            sequence=row["sequence"],
            role=row["role"],
            text=row["text"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_insight(row: sqlite3.Row) -> InsightRecord:
        summary = json.loads(row["summary_json"] or "{}")
        keys = row.keys()
        return InsightRecord(
            id=row["id"],
            session_id=row["session_id"],
            project_id=row["project_id"],
            owner_id=row["owner_id"],
            summary=ExecutiveSummary(
                what_we_learned=summary.get("whatWeLearned", ""),
                what_to_build_next=summary.get("whatToBuildNext", ""),
            ),
            pain_points=[PainPoint(**item) for item in json.loads(row["pain_points_json"] or "[]")],
            quotes=[Quote(**item) for item in json.loads(row["quotes_json"] or "[]")],
            objections=[Objection(**item) for item in json.loads(row["objections_json"] or "[]")],
            feature_ideas=[FeatureIdea(**item) for item in json.loads(row["feature_ideas_json"] or "[]")],
            created_at=row["created_at"],
            project_title=row["project_title"] if "project_title" in keys else None,
        )

    # Projects

    def create_project(
        self,
        owner_id: int,
        title: str,
        product_idea: str,
        founder_name: str | None = None,
    ) -> Project:
        created_at = utc_now_iso()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO projects (owner_id, title, product_idea, founder_name, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (owner_id, title, product_idea, founder_name, created_at),
            )
            project_id = int(cur.lastrowid)
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
            if row is None:
                raise RuntimeError("Failed to create project")
            return self._row_to_project(row)

    def get_project(self, project_id: int) -> Project | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
            return self._row_to_project(row) if row else None

    def list_projects(self, owner_id: int) -> list[Project]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM projects WHERE owner_id = ? ORDER BY id DESC",
                (owner_id,),
            ).fetchall()
            return [self._row_to_project(r) for r in rows]

    def update_interview_guide(self, project_id: int, guide: InterviewGuide) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE projects SET interview_guide_json = ? WHERE id = ?",
                (json.dumps(guide.to_dict(), ensure_ascii=True), project_id),
            )

    def count_concluded_sessions(self, project_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM sessions WHERE project_id = ? AND status = ?",
                (project_id, STATUS_CONCLUDED),
            ).fetchone()
            return int(row["cnt"])

    # Sessions

    def create_session(self, project_id: int, respondent_id: int) -> Session:
        started_at = utc_now_iso()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO sessions (project_id, respondent_id, status, started_at)
                VALUES (?, ?, ?, ?)
                """,
                (project_id, respondent_id, STATUS_NOT_STARTED, started_at),
            )
            session_id = int(cur.lastrowid)

            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                raise RuntimeError("Failed to create session")
            return self._row_to_session(row)

    def get_session(self, session_id: int) -> Session | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
            return self._row_to_session(row) if row else None

    def get_active_session(self, respondent_id: int) -> Session | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM sessions
                WHERE respondent_id = ? AND status IN (?, ?)
                ORDER BY id DESC LIMIT 1
                """,
                (respondent_id, STATUS_NOT_STARTED, STATUS_IN_PROGRESS),
            ).fetchone()
            return self._row_to_session(row) if row else None

    def get_latest_session(self, respondent_id: int) -> Session | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM sessions
                WHERE respondent_id = ?
                ORDER BY id DESC LIMIT 1
                """,
                (respondent_id,),
            ).fetchone()
            return self._row_to_session(row) if row else None

    def transition_status(self, session_id: int, from_status: str, to_status: str) -> bool:
        """Move a session between states only if it is still in ``from_status``.

        Returns ``False`` when another caller already moved it.
        """
        concluded_at = utc_now_iso() if to_status == STATUS_CONCLUDED else None
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE sessions
                SET status = ?, concluded_at = COALESCE(?, concluded_at)
                WHERE id = ? AND status = ?
                """,
                (to_status, concluded_at, session_id, from_status),
            )
            return cur.rowcount == 1

    def delete_session(self, session_id: int) -> bool:
        """Delete a session that is not concluded, together with its turns.

        Returns ``False`` when nothing was deleted.
        """
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM sessions WHERE id = ? AND status != ?",
                (session_id, STATUS_CONCLUDED),
            )
            if cur.rowcount != 1:
                return False
            conn.execute("DELETE FROM turns WHERE session_id = ?", (session_id,))
        return True

    def delete_active_session(self, respondent_id: int) -> bool:
        session = self.get_active_session(respondent_id)
        if session is None:
            return False
        return self.delete_session(session.id)

    # Turns

    def append_turn(self, session_id: int, role: str, text: str) -> Turn:
        created_at = utc_now_iso()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(sequence), 0) AS max_seq FROM turns WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            next_seq = int(row["max_seq"]) + 1
            cur = conn.execute(
                """
                INSERT INTO turns (session_id, sequence, role, text, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (session_id, next_seq, role, text, created_at),
            )
            turn_id = int(cur.lastrowid)
            turn_row = conn.execute("SELECT * FROM turns WHERE id = ?", (turn_id,)).fetchone()
            if turn_row is None:
                raise RuntimeError("Failed to create turn")
            return self._row_to_turn(turn_row)

    def list_turns(self, session_id: int) -> list[Turn]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM turns WHERE session_id = ? ORDER BY sequence ASC",
                (session_id,),
            ).fetchall()
            return [self._row_to_turn(r) for r in rows]

    def count_respondent_turns(self, session_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM turns WHERE session_id = ? AND role = ?",
                (session_id, ROLE_RESPONDENT),
            ).fetchone()
            return int(row["cnt"])

    # Insights

    def insert_insight(
        self,
        session_id: int,
        project_id: int,
        owner_id: int,
        payload: dict[str, Any],
    ) -> tuple[InsightRecord, bool]:
        """Store a validated insight payload once per session.

        Returns the stored record and whether this call created it.
        """
        created_at = utc_now_iso()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO insights (
                    session_id, project_id, owner_id, summary_json, pain_points_json,
                    quotes_json, objections_json, feature_ideas_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    project_id,
                    owner_id,
                    json.dumps(payload["summary"], ensure_ascii=True),
                    json.dumps(payload["painPoints"], ensure_ascii=True),
                    json.dumps(payload["quotes"], ensure_ascii=True),
                    json.dumps(payload["objections"], ensure_ascii=True),
                    json.dumps(payload["featureIdeas"], ensure_ascii=True),
                    created_at,
                ),
            )
            created = cur.rowcount == 1
            row = conn.execute(
                """
                SELECT insights.*, projects.title AS project_title
                FROM insights LEFT JOIN projects ON projects.id = insights.project_id
                WHERE insights.session_id = ?
                """,
                (session_id,),
            ).fetchone()
            if row is None:
                raise RuntimeError("Failed to store insight record")
            return self._row_to_insight(row), created

    def get_insight_for_session(self, session_id: int) -> InsightRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT insights.*, projects.title AS project_title
                FROM insights LEFT JOIN projects ON projects.id = insights.project_id
                WHERE insights.session_id = ?
                """,
                (session_id,),
            ).fetchone()
            return self._row_to_insight(row) if row else None

    def list_insights(self, owner_id: int) -> list[InsightRecord]:
        """Return an owner's insight records, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT insights.*, projects.title AS project_title
                FROM insights LEFT JOIN projects ON projects.id = insights.project_id
                WHERE insights.owner_id = ?
                ORDER BY insights.created_at DESC, insights.id DESC
                """,
                (owner_id,),
            ).fetchall()
            return [self._row_to_insight(r) for r in rows]
