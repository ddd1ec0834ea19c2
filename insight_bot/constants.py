from __future__ import annotations

ROLE_AGENT = "agent"
ROLE_RESPONDENT = "respondent"

STATUS_NOT_STARTED = "not_started"
STATUS_IN_PROGRESS = "in_progress"
STATUS_CONCLUDED = "concluded"

CLOSING_PHRASE = "thank you for your time"
COMPLETION_MARKER = "[INTERVIEW_COMPLETE]"

DEFAULT_FOUNDER_NAME = "Founder"
DEFAULT_COMPANY_NAME = "Startup"
UNKNOWN_PROJECT_TITLE = "Unknown Project"
NOT_AVAILABLE = "N/A"

OPENING_LINE_TEMPLATE = (
    "Hi there! I'm {name}, and I'm working on a new idea: {title}. "
    "Thanks for taking the time to chat! Could you start by telling me a bit "
    "about your experiences related to this?"
)

FALLBACK_APOLOGY = "I seem to be having some trouble connecting. Please try again in a moment."

# Insight record contract: top-level keys and per-list caps.
INSIGHT_KEYS = ("summary", "painPoints", "quotes", "objections", "featureIdeas")
INSIGHT_LIST_LIMITS = {
    "painPoints": 5,
    "quotes": 5,
    "objections": 3,
    "featureIdeas": 3,
}
INSIGHT_ITEM_FIELDS = {
    "painPoints": ("point", "severity"),
    "quotes": ("quote", "speaker", "sentiment"),
    "objections": ("objection", "type"),
    "featureIdeas": ("idea", "source"),
}

# Aggregate view sizes.
TOP_RANKED_LIMIT = 5
SUMMARY_ROLLUP_LIMIT = 5
QUOTE_SAMPLE_LIMIT = 5
KEY_INSIGHT_LIMIT = 5
KEY_INSIGHT_TITLE_CHARS = 100
OVERVIEW_INSIGHT_CHARS = 50
