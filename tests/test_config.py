import logging

from storyloom.common import Settings, configure_logging, load_settings


def test_environment_then_yaml_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("STORYLOOM_DATABASE_URL", "sqlite:///from-env.db")
    monkeypatch.setenv("STORYLOOM_TRIGGER_COOLDOWN_SECONDS", "45")
    monkeypatch.delenv("STORYLOOM_CONFIG", raising=False)
    config = tmp_path / "storyloom.yaml"
    config.write_text(
        "trigger_cooldown_seconds: 10\nstuck_after_minutes: 5\nreplicate_model: null\n",
        encoding="utf-8",
    )

    settings = load_settings(config)

    assert settings.database_url == "sqlite:///from-env.db"
    assert settings.trigger_cooldown_seconds == 10
    assert settings.stuck_after_minutes == 5


def test_defaults_when_nothing_is_set(monkeypatch):
    for name in (
        "STORYLOOM_DATABASE_URL",
        "STORYLOOM_TRIGGER_COOLDOWN_SECONDS",
        "STORYLOOM_CONFIG",
        "STRIPE_SECRET_KEY",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.database_url == Settings().database_url
    assert settings.trigger_cooldown_seconds == 30
    assert settings.stripe_api_key is None


def test_configure_logging_installs_one_handler():
    configure_logging("DEBUG")
    configure_logging("INFO")
    logger = logging.getLogger("storyloom")
    handlers = [handler for handler in logger.handlers if getattr(handler, "_storyloom", False)]
    assert len(handlers) == 1
    assert logger.level == logging.INFO
