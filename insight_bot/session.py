"""Lifecycle of a single customer interview.

``not_started -> in_progress -> concluded``; a concluded session never moves
again and is the only state in which insights are extracted.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone

from .constants import (
    FALLBACK_APOLOGY,
    ROLE_AGENT,
    ROLE_RESPONDENT,
    STATUS_CONCLUDED,
    STATUS_IN_PROGRESS,
    STATUS_NOT_STARTED,
)
from .database import Database
from .dialogue import DialogueManager, TurnGenerationError
from .extraction import ExtractionError, InsightExtractor
from .models import InsightRecord, ReplyOutcome, Session, Turn

logger = logging.getLogger(__name__)


class InitializationError(RuntimeError):
    pass


class InvalidStateError(RuntimeError):
    pass


class InterviewSession:
    def __init__(
        self,
        db: Database,
        dialogue: DialogueManager,
        extractor: InsightExtractor,
    ) -> None:
        self.db = db
        self.dialogue = dialogue
        self.extractor = extractor

    def _require_session(self, session_id: int) -> Session:
        session = self.db.get_session(session_id)
        if session is None:
            raise InvalidStateError(f"Session {session_id} does not exist")
        return session

    def _discard(self, session_id: int) -> None:
        # A not_started session counts as the respondent's active one.
        try:
            self.db.delete_session(session_id)
        except sqlite3.Error as exc:
            logger.error("Could not remove half-started session %s: %s", session_id, exc)

    def start(self, project_id: int, respondent_id: int) -> tuple[Session, Turn]:
        project = self.db.get_project(project_id)
        if project is None:
            raise InitializationError(f"Project {project_id} not found")

        try:
            session = self.db.create_session(project_id=project.id, respondent_id=respondent_id)
        except (sqlite3.Error, RuntimeError) as exc:
            raise InitializationError(f"Could not create interview session: {exc}") from exc

        try:
            opening = self.dialogue.opening_line(project, project.persona())
            first_turn = self.db.append_turn(session.id, role=ROLE_AGENT, text=opening)
            if not self.db.transition_status(session.id, STATUS_NOT_STARTED, STATUS_IN_PROGRESS):
                raise InitializationError(f"Session {session.id} could not be started")
            started = self.db.get_session(session.id)
            if started is None:
                raise InitializationError(f"Session {session.id} disappeared after creation")
        except InitializationError:
            self._discard(session.id)
            raise
        except (sqlite3.Error, RuntimeError) as exc:
            self._discard(session.id)
            raise InitializationError(f"Could not start interview session: {exc}") from exc

        logger.info("Session %s started for project %s", started.id, project.id)
        return started, first_turn

    async def submit_reply(self, session_id: int, text: str) -> ReplyOutcome:
        session = self._require_session(session_id)
        if session.status != STATUS_IN_PROGRESS:
            raise InvalidStateError(f"Session {session.id} is {session.status}, not accepting replies")

        reply_text = text.strip()
        if not reply_text:
            raise ValueError("Reply text must not be empty")

        project = self.db.get_project(session.project_id)
        if project is None:
            raise InvalidStateError(f"Project {session.project_id} for session {session.id} is gone")

        history = self.db.list_turns(session.id)
        respondent_turn = self.db.append_turn(session.id, role=ROLE_RESPONDENT, text=reply_text)

        try:
            reply = await self.dialogue.next_reply(
                product_idea=project.idea_text,
                persona=project.persona(),
                history=history,
                user_response=reply_text,
            )
        except TurnGenerationError as exc:
            logger.warning("Turn generation failed for session %s: %s", session.id, exc)
            apology = Turn(
                id=0,
                session_id=session.id,
                sequence=respondent_turn.sequence + 1,
                role=ROLE_AGENT,
                text=FALLBACK_APOLOGY,
                created_at=datetime.now(timezone.utc).isoformat(),
            )
            return ReplyOutcome(
                session=session,
                respondent_turn=respondent_turn,
                agent_turn=apology,
                recovered=True,
            )

        agent_turn = self.db.append_turn(session.id, role=ROLE_AGENT, text=reply.text)
        outcome = ReplyOutcome(session=session, respondent_turn=respondent_turn, agent_turn=agent_turn)

        respondent_turns = self.db.count_respondent_turns(session.id)
        if not self.dialogue.should_conclude(respondent_turns, reply):
            return outcome

        # Only the caller that wins the status swap runs extraction.
        if not self.db.transition_status(session.id, STATUS_IN_PROGRESS, STATUS_CONCLUDED):
            logger.info("Session %s was already concluded elsewhere", session.id)
            outcome.session = self.db.get_session(session.id) or session
            outcome.concluded = outcome.session.status == STATUS_CONCLUDED
            return outcome

        concluded = self.db.get_session(session.id) or session
        outcome.session = concluded
        outcome.concluded = True
        logger.info(
            "Session %s concluded after %s respondent turns (signalled=%s)",
            session.id,
            respondent_turns,
            self.dialogue.signals_completion(reply),
        )

        try:
            outcome.insight = await self.extractor.process_session(concluded)
        except ExtractionError as exc:
            logger.error("Insight extraction failed for session %s: %s", session.id, exc)
            outcome.extraction_error = exc
        return outcome

    async def retry_insights(self, session_id: int) -> InsightRecord:
        session = self._require_session(session_id)
        if session.status != STATUS_CONCLUDED:
            raise InvalidStateError(f"Session {session.id} is {session.status}, insights need a concluded session")
        return await self.extractor.process_session(session)

    def active_session(self, respondent_id: int) -> Session | None:
        return self.db.get_active_session(respondent_id)

    def latest_session(self, respondent_id: int) -> Session | None:
        return self.db.get_latest_session(respondent_id)

    def abandon(self, respondent_id: int) -> bool:
        return self.db.delete_active_session(respondent_id)
