from __future__ import annotations

import logging
from typing import Any

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import ContextTypes

from .analytics import AggregationError, AnalyticsService
from .constants import STATUS_CONCLUDED
from .database import Database
from .dialogue import DialogueManager
from .extraction import ExtractionError
from .openai_service import OpenAIServiceError
from .reporting import ReportBuilder
from .session import InitializationError, InterviewSession, InvalidStateError

logger = logging.getLogger(__name__)


COMMANDS_HINT = "Commands: /new_project, /projects, /analytics, /interview, /status, /reset, /help"


def _service(context: ContextTypes.DEFAULT_TYPE, key: str) -> Any:
    return context.application.bot_data[key]


def _chunk_text(text: str, limit: int = 3800) -> list[str]:
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    cursor = 0
    while cursor < len(text):
        next_cursor = min(cursor + limit, len(text))
        if next_cursor < len(text):
            split = text.rfind("\n", cursor, next_cursor)
            if split > cursor:
                next_cursor = split
        chunks.append(text[cursor:next_cursor].strip())
        cursor = next_cursor
    return [c for c in chunks if c]


async def _send_report(update: Update, report_markdown: str) -> None:
    if update.effective_message is None:
        return
    for chunk in _chunk_text(report_markdown):
        await update.effective_message.reply_text(chunk)


def _parse_id(raw: str | None) -> int | None:
    if not raw:
        return None
    cleaned = raw.strip().lstrip("#")
    if cleaned.lower().startswith("p"):
        cleaned = cleaned[1:]
    return int(cleaned) if cleaned.isdigit() else None


def parse_project_args(text: str) -> tuple[str, str] | None:
    """Split ``Title | product idea`` into its two parts."""
    if "|" in text:
        title, idea = text.split("|", 1)
    else:
        title, idea = text, ""
    title = title.strip()
    if not title:
        return None
    return title, idea.strip()


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    project_id = _parse_id(context.args[0]) if context.args else None
    if project_id is not None:
        db: Database = _service(context, "db")
        project = db.get_project(project_id)
        if project is None:
            await update.effective_message.reply_text("This interview link is no longer valid.")
            return

        persona = project.persona()
        keyboard = InlineKeyboardMarkup(
            [[InlineKeyboardButton("Start interview", callback_data=f"start_interview:{project.id}")]]
        )
        await update.effective_message.reply_text(
            f"Hi! {persona.name} from {persona.company} would love to hear about your experience.\n"
            "It is a short chat of a few questions. Answer in your own words.",
            reply_markup=keyboard,
        )
        return

    welcome_lines = [
        "Hi! I run customer interviews for your product ideas.",
        "",
        "For founders:",
        "/new_project Title | what you want to validate - create a project",
        "/projects - your projects and interview links",
        "/analytics - insights across all completed interviews",
        "",
        "For interviewees:",
        "/interview <project id> - start an interview",
    ]
    await update.effective_message.reply_text("\n".join(welcome_lines))


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None:
        return
    await update.effective_message.reply_text(
        "Commands:\n"
        "/new_project Title | idea - create a project and its interview guide\n"
        "/projects - list your projects\n"
        "/analytics - aggregated insights across your interviews\n"
        "/insights [session id] - insights of one interview\n"
        "/interview <project id> - start an interview\n"
        "/status - progress of the current interview\n"
        "/retry_insights [session id] - retry insight generation\n"
        "/reset - abandon the current interview\n"
        "/help - this message"
    )


async def new_project_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    parsed = parse_project_args(" ".join(context.args or []))
    if parsed is None:
        await update.effective_message.reply_text("Usage: /new_project Title | what you want to validate")
        return
    title, idea = parsed

    db: Database = _service(context, "db")
    dialogue: DialogueManager = _service(context, "dialogue")

    project = db.create_project(
        owner_id=update.effective_user.id,
        title=title,
        product_idea=idea,
        founder_name=update.effective_user.first_name,
    )

    await update.effective_message.reply_text("Project created. Drafting an interview guide...")

    lines = [f"Project #{project.id}: {project.title}"]
    try:
        guide = await dialogue.generate_guide(project.idea_text)
        db.update_interview_guide(project.id, guide)
        lines.append("")
        lines.append("Interview guide:")
        for item in dialogue.guide_preview(guide):
            lines.append(f"- {item['text']}")
    except OpenAIServiceError as exc:
        # The project stays usable without a guide; interviews open with a generic line.
        logger.warning("Could not generate interview guide for project %s: %s", project.id, exc)
        lines.append("")
        lines.append("Interview guide could not be generated, a generic opening will be used.")

    bot_username = context.bot.username if context.bot else None
    lines.append("")
    if bot_username:
        lines.append(f"Share this link with interviewees: https://t.me/{bot_username}?start=p{project.id}")
    lines.append(f"Or ask them to send: /interview {project.id}")
    await update.effective_message.reply_text("\n".join(lines))


async def projects_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    db: Database = _service(context, "db")
    projects = db.list_projects(update.effective_user.id)
    if not projects:
        await update.effective_message.reply_text("No projects yet. Create one with /new_project.")
        return

    lines = ["Your projects:"]
    for project in projects:
        completed = db.count_concluded_sessions(project.id)
        guide_note = "guide ready" if project.interview_guide else "no guide"
        lines.append(f"#{project.id} {project.title} - {completed} completed interviews, {guide_note}")
    await update.effective_message.reply_text("\n".join(lines))


async def _start_interview(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    project_id: int,
) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    sessions: InterviewSession = _service(context, "sessions")

    active = sessions.active_session(update.effective_user.id)
    if active:
        await update.effective_message.reply_text(
            "You already have an interview in progress. Keep answering or use /reset."
        )
        return

    try:
        _, first_turn = sessions.start(project_id=project_id, respondent_id=update.effective_user.id)
    except InitializationError as exc:
        logger.warning("Interview start failed for project %s: %s", project_id, exc)
        await update.effective_message.reply_text("Could not start the interview. Please try again later.")
        return

    await update.effective_message.reply_text(first_turn.text)


async def interview_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None:
        return

    project_id = _parse_id(context.args[0]) if context.args else None
    if project_id is None:
        await update.effective_message.reply_text("Usage: /interview <project id>")
        return
    await _start_interview(update, context, project_id)


async def start_interview_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.callback_query is None:
        return

    await update.callback_query.answer()
    data = update.callback_query.data or ""
    project_id = _parse_id(data.split(":", 1)[-1])
    if project_id is None:
        return
    await _start_interview(update, context, project_id)


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    db: Database = _service(context, "db")
    sessions: InterviewSession = _service(context, "sessions")
    dialogue: DialogueManager = _service(context, "dialogue")

    session = sessions.active_session(update.effective_user.id)
    if session is None:
        latest = sessions.latest_session(update.effective_user.id)
        if latest and latest.status == STATUS_CONCLUDED:
            await update.effective_message.reply_text("Your last interview is complete. Thank you!")
        else:
            await update.effective_message.reply_text("No interview in progress. Use /interview <project id>.")
        return

    answered = db.count_respondent_turns(session.id)
    await update.effective_message.reply_text(
        f"Interview in progress: {answered}/{dialogue.max_respondent_turns} answers so far."
    )


async def reset_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    sessions: InterviewSession = _service(context, "sessions")
    if sessions.abandon(update.effective_user.id):
        await update.effective_message.reply_text("Interview abandoned. Use /interview to start again.")
    else:
        await update.effective_message.reply_text("No interview in progress.")


async def insights_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    db: Database = _service(context, "db")
    reporter: ReportBuilder = _service(context, "reporter")

    session_id = _parse_id(context.args[0]) if context.args else None
    if session_id is None:
        records = db.list_insights(update.effective_user.id)
        record = records[0] if records else None
    else:
        record = db.get_insight_for_session(session_id)
        if record is not None and record.owner_id != update.effective_user.id:
            record = None

    if record is None:
        await update.effective_message.reply_text("No insights found yet.")
        return

    artifacts = reporter.export_insight(record)
    await _send_report(update, artifacts.markdown)
    await update.effective_message.reply_text(f"JSON export saved: {artifacts.export_path}")


async def retry_insights_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    db: Database = _service(context, "db")
    sessions: InterviewSession = _service(context, "sessions")

    user_id = update.effective_user.id
    session_id = _parse_id(context.args[0]) if context.args else None
    if session_id is None:
        latest = sessions.latest_session(user_id)
        session_id = latest.id if latest else None
    if session_id is None:
        await update.effective_message.reply_text("No interview to process.")
        return

    session = db.get_session(session_id)
    project = db.get_project(session.project_id) if session else None
    if session is None or project is None or user_id not in {session.respondent_id, project.owner_id}:
        await update.effective_message.reply_text("Interview not found.")
        return

    try:
        await sessions.retry_insights(session_id)
    except InvalidStateError:
        await update.effective_message.reply_text("This interview is not finished yet.")
        return
    except ExtractionError as exc:
        logger.error("Manual insight retry failed for session %s: %s", session_id, exc)
        await update.effective_message.reply_text(
            "Insight generation failed again. Please retry with /retry_insights in a moment."
        )
        return

    await update.effective_message.reply_text("Insights generated. Thank you!")


async def analytics_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    analytics: AnalyticsService = _service(context, "analytics")
    reporter: ReportBuilder = _service(context, "reporter")

    try:
        view = analytics.build_view(update.effective_user.id)
    except AggregationError as exc:
        logger.error("Analytics failed for %s: %s", update.effective_user.id, exc)
        await update.effective_message.reply_text("Could not load analytics right now. Try again later.")
        return

    artifacts = reporter.export_report(update.effective_user.id, view)
    await _send_report(update, artifacts.markdown)
    await update.effective_message.reply_text(f"JSON export saved: {artifacts.export_path}")


async def text_message_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    text = (update.effective_message.text or "").strip()
    if not text:
        return

    sessions: InterviewSession = _service(context, "sessions")

    session = sessions.active_session(update.effective_user.id)
    if session is None:
        await update.effective_message.reply_text("No interview in progress. " + COMMANDS_HINT)
        return

    try:
        outcome = await sessions.submit_reply(session.id, text)
    except InvalidStateError as exc:
        logger.info("Rejected reply for session %s: %s", session.id, exc)
        await update.effective_message.reply_text("This interview has already finished. Thank you!")
        return
    except Exception as exc:  # pragma: no cover - defensive branch
        logger.exception("Unexpected error in message handler: %s", exc)
        await update.effective_message.reply_text("Something went wrong while processing your answer. Please try again.")
        return

    await update.effective_message.reply_text(outcome.agent_turn.text)

    if not outcome.concluded:
        return

    if outcome.extraction_error is not None:
        await update.effective_message.reply_text(
            "Thanks for the interview! We could not summarize it yet. "
            "Use /retry_insights to try again."
        )
        return

    await update.effective_message.reply_text("Interview complete. Thank you for sharing your experience!")
