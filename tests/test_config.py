from __future__ import annotations

import pytest

from insight_bot.config import ConfigError, load_config


@pytest.fixture
def base_env(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    for name in ("OPENAI_MODEL", "OPENAI_INSIGHTS_MODEL", "MAX_RESPONDENT_TURNS", "HISTORY_LIMIT", "OPENAI_MAX_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(base_env):
    config = load_config()

    assert config.openai_model == "gpt-4.1-nano"
    assert config.openai_insights_model == "gpt-4.1"
    assert config.max_respondent_turns == 4
    assert config.history_limit == 10
    assert config.openai_max_attempts == 1


def test_overrides(base_env):
    base_env.setenv("MAX_RESPONDENT_TURNS", "6")
    base_env.setenv("OPENAI_MAX_ATTEMPTS", "3")
    base_env.setenv("OPENAI_MODEL", "gpt-4o-mini")

    config = load_config()

    assert config.max_respondent_turns == 6
    assert config.openai_max_attempts == 3
    assert config.openai_model == "gpt-4o-mini"


@pytest.mark.parametrize("value", ["0", "21", "four"])
def test_rejects_bad_turn_cap(base_env, value):
    base_env.setenv("MAX_RESPONDENT_TURNS", value)

    with pytest.raises(ConfigError):
        load_config()


@pytest.mark.parametrize("missing", ["TELEGRAM_BOT_TOKEN", "OPENAI_API_KEY"])
def test_requires_credentials(base_env, missing):
    base_env.setenv(missing, "  ")

    with pytest.raises(ConfigError, match=missing):
        load_config()
