import pytest

from config import load_config, parse_schedule_times, parse_whitelist
from errors import ConfigurationError

BASE_ENV = {
    "MINIFLUX_URL": "https://reader.example.com/",
    "MINIFLUX_USERNAME": "reader",
    "MINIFLUX_PASSWORD": "hunter2",
    "OPENAI_URL": "https://api.example.com",
    "OPENAI_TOKEN": "sk-abcdefghijklmnop",
    "OPENAI_MODEL": "gpt-4o-mini",
    "MINIFLUX_WEBHOOK_SECRET": "shh",
    "WHITELIST_URL": "https://a.example.com/, https://b.example.com/,,",
}


def test_load_config_from_mapping():
    config = load_config(dict(BASE_ENV), load_files=False)

    assert config.miniflux.url == "https://reader.example.com"
    assert config.miniflux.username == "reader"
    assert config.openai.model == "gpt-4o-mini"
    assert config.webhook_secret == "shh"
    assert config.whitelist == frozenset({"https://a.example.com/", "https://b.example.com/"})
    assert config.http_timeout == 30
    assert config.webhook_max_entries == 0
    assert config.validate(require_webhook=True) is config


def test_config_is_immutable():
    config = load_config(dict(BASE_ENV), load_files=False)
    with pytest.raises(AttributeError):
        config.whitelist = frozenset()


def test_invalid_numbers_fall_back_to_defaults():
    env = dict(BASE_ENV, HTTP_TIMEOUT="soon", POLL_INTERVAL_MINUTES="0", WEBHOOK_MAX_ENTRIES="25")
    config = load_config(env, load_files=False)

    assert config.http_timeout == 30
    assert config.poll_interval_minutes == 30
    assert config.webhook_max_entries == 25


def test_webhook_secret_only_required_for_webhook():
    env = dict(BASE_ENV)
    del env["MINIFLUX_WEBHOOK_SECRET"]
    config = load_config(env, load_files=False)

    assert config.validate() is config
    with pytest.raises(ConfigurationError) as excinfo:
        config.validate(require_webhook=True)
    assert excinfo.value.details["missing"] == ["MINIFLUX_WEBHOOK_SECRET"]


def test_validate_lists_every_missing_value():
    env = dict(BASE_ENV)
    del env["OPENAI_TOKEN"]
    del env["MINIFLUX_WEBHOOK_SECRET"]
    config = load_config(env, load_files=False)

    with pytest.raises(ConfigurationError) as excinfo:
        config.validate()
    assert excinfo.value.details["missing"] == ["OPENAI_TOKEN"]
    with pytest.raises(ConfigurationError) as excinfo:
        config.validate(require_webhook=True)
    assert excinfo.value.details["missing"] == ["OPENAI_TOKEN", "MINIFLUX_WEBHOOK_SECRET"]


def test_summary_masks_secrets():
    summary = load_config(dict(BASE_ENV), load_files=False).summary()
    assert summary["openai_token"] == "sk-a***mnop"
    assert summary["miniflux_password"] == "*******"
    assert "hunter2" not in str(summary)


def test_secrets_file_overrides(tmp_path):
    secrets = tmp_path / "secrets.yaml"
    secrets.write_text("environment:\n  OPENAI_TOKEN: from-file\n  WEBHOOK_PORT: 9090\n", encoding="utf-8")
    env = dict(BASE_ENV, SECRETS_FILE=str(secrets))

    config = load_config(env, load_files=True)
    assert config.openai.token == "from-file"
    assert config.webhook_port == 9090


def test_missing_secrets_file_is_tolerated(tmp_path):
    env = dict(BASE_ENV, SECRETS_FILE=str(tmp_path / "nope.yaml"))
    assert load_config(env, load_files=True).openai.token == BASE_ENV["OPENAI_TOKEN"]


def test_parsers():
    assert parse_whitelist(None) == frozenset()
    assert parse_whitelist(" https://x/ ") == frozenset({"https://x/"})
    assert parse_schedule_times("07:00, 21:35") == ("07:00", "21:35")
    assert parse_schedule_times("") == ()
