"""Tests for configuration loading and validation."""

import os

import pytest

from rosterbot_core.config import BotConfig, ConfigError, load_config


@pytest.fixture(autouse=True)
def clean_env(mocker):
    # load_dotenv writes to os.environ; restore it after every test.
    mocker.patch.dict(os.environ, {}, clear=True)


def make_valid(**overrides):
    values = {
        "jira_domain": "acme.atlassian.net",
        "jira_email": "bot@acme.com",
        "jira_api_token": "tok",
        "backend_url": "https://api.acme.com",
    }
    values.update(overrides)
    return BotConfig(**values)


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"), env_file=None)
    assert config.jira_project == "JESI"
    assert config.jira_statuses == ["Open", "Review"]
    assert config.poll_interval == 300
    assert config.ai_provider == "claude-cli"
    assert config.vault == "onepassword"


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".rosterbot.yml"
    cfg.write_text("jira_project: OPS\npoll_interval: 60\n")
    config = load_config(config_path=str(cfg), env_file=None)
    assert config.jira_project == "OPS"
    assert config.poll_interval == 60


def test_unknown_keys_ignored(tmp_path):
    cfg = tmp_path / ".rosterbot.yml"
    cfg.write_text("colour: blue\njira_project: OPS\n")
    assert load_config(config_path=str(cfg), env_file=None).jira_project == "OPS"


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".rosterbot.yml"
    cfg.write_text("poll_interval: 60\n")
    config = load_config(config_path=str(cfg), cli_overrides={"poll_interval": 10}, env_file=None)
    assert config.poll_interval == 10


def test_none_cli_overrides_ignored(tmp_path):
    cfg = tmp_path / ".rosterbot.yml"
    cfg.write_text("poll_interval: 60\n")
    config = load_config(config_path=str(cfg), cli_overrides={"poll_interval": None}, env_file=None)
    assert config.poll_interval == 60


def test_environment_overrides_file(tmp_path):
    cfg = tmp_path / ".rosterbot.yml"
    cfg.write_text("jira_domain: from-file.atlassian.net\n")
    os.environ["JIRA_DOMAIN"] = "from-env.atlassian.net"
    os.environ["BASE_CLJ_API_URL"] = "https://search.acme.com"
    config = load_config(config_path=str(cfg), env_file=None)
    assert config.jira_domain == "from-env.atlassian.net"
    assert config.backend_search_url == "https://search.acme.com"


def test_dotenv_file_loaded(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("JIRA_API_TOKEN=from-dotenv\nJIRA_EMAIL=dotenv@acme.com\n")
    os.environ["JIRA_EMAIL"] = "real@acme.com"
    config = load_config(config_path=str(tmp_path / "none.yml"), env_file=str(env_file))
    assert config.jira_api_token == "from-dotenv"
    # Real environment wins over .env.
    assert config.jira_email == "real@acme.com"


class TestValidate:
    def test_valid(self):
        config = make_valid()
        assert config.validate() is config

    def test_lists_every_missing_setting(self):
        with pytest.raises(ConfigError) as excinfo:
            BotConfig().validate()
        message = str(excinfo.value)
        assert "JIRA_DOMAIN" in message
        assert "JIRA_API_TOKEN" in message
        assert "BASE_API_URL" in message

    def test_provider_key_required(self):
        with pytest.raises(ConfigError, match="ANTHROPIC_API_KEY"):
            make_valid(ai_provider="anthropic").validate()

    def test_unknown_provider(self):
        with pytest.raises(ConfigError, match="ai_provider"):
            make_valid(ai_provider="llama").validate()

    def test_interval_must_be_positive(self):
        with pytest.raises(ConfigError, match="poll_interval"):
            make_valid(poll_interval=0).validate()

    def test_email_template_needs_placeholder(self):
        with pytest.raises(ConfigError, match="email_template"):
            make_valid(email_template="fixed@acme.com").validate()
