from __future__ import annotations

import logging
import sys

from telegram import BotCommand, BotCommandScopeAllPrivateChats, BotCommandScopeDefault
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, MessageHandler, filters

from insight_bot.analytics import AnalyticsService, InsightAggregator
from insight_bot.config import ConfigError, DB_PATH, EXPORTS_DIR, ensure_data_dirs, load_config
from insight_bot.database import Database
from insight_bot.dialogue import DialogueManager
from insight_bot.extraction import InsightExtractor
from insight_bot.handlers import (
    analytics_command,
    help_command,
    insights_command,
    interview_command,
    new_project_command,
    projects_command,
    reset_command,
    retry_insights_command,
    start_command,
    start_interview_callback,
    status_command,
    text_message_handler,
)
from insight_bot.openai_service import OpenAIService
from insight_bot.reporting import ReportBuilder
from insight_bot.session import InterviewSession

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


async def _post_init_set_commands(app: Application) -> None:
    commands = [
        BotCommand("start", "Welcome and interview links"),
        BotCommand("new_project", "Create a project: Title | idea"),
        BotCommand("projects", "List your projects"),
        BotCommand("analytics", "Insights across interviews"),
        BotCommand("insights", "Insights of one interview"),
        BotCommand("interview", "Start an interview"),
        BotCommand("status", "Interview progress"),
        BotCommand("retry_insights", "Retry insight generation"),
        BotCommand("reset", "Abandon the current interview"),
        BotCommand("help", "Command reference"),
    ]

    scopes = [BotCommandScopeDefault(), BotCommandScopeAllPrivateChats()]
    for scope in scopes:
        await app.bot.delete_my_commands(scope=scope)
        await app.bot.set_my_commands(commands, scope=scope)

    logger.info("Telegram command menu updated for default/private scopes")


def build_application() -> Application:
    ensure_data_dirs()
    config = load_config()

    db = Database(DB_PATH)
    db.init()

    openai_service = OpenAIService(
        api_key=config.openai_api_key,
        model=config.openai_model,
        insights_model=config.openai_insights_model,
        max_attempts=config.openai_max_attempts,
    )
    dialogue = DialogueManager(
        openai_service=openai_service,
        max_respondent_turns=config.max_respondent_turns,
        history_limit=config.history_limit,
    )
    extractor = InsightExtractor(db=db, openai_service=openai_service)
    sessions = InterviewSession(db=db, dialogue=dialogue, extractor=extractor)
    analytics = AnalyticsService(db=db, aggregator=InsightAggregator())
    reporter = ReportBuilder(exports_dir=EXPORTS_DIR)

    app = Application.builder().token(config.telegram_bot_token).post_init(_post_init_set_commands).build()

    app.bot_data["db"] = db
    app.bot_data["dialogue"] = dialogue
    app.bot_data["sessions"] = sessions
    app.bot_data["analytics"] = analytics
    app.bot_data["reporter"] = reporter

    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("new_project", new_project_command))
    app.add_handler(CommandHandler("projects", projects_command))
    app.add_handler(CommandHandler("interview", interview_command))
    app.add_handler(CommandHandler("status", status_command))
    app.add_handler(CommandHandler("reset", reset_command))
    app.add_handler(CommandHandler("insights", insights_command))
    app.add_handler(CommandHandler("retry_insights", retry_insights_command))
    app.add_handler(CommandHandler("analytics", analytics_command))

    app.add_handler(CallbackQueryHandler(start_interview_callback, pattern=r"^start_interview:\d+$"))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, text_message_handler))

    return app


def main() -> None:
    configure_logging()

    try:
        app = build_application()
    except ConfigError as exc:
        logging.error("Startup failed: %s", exc)
        sys.exit(1)

    app.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
