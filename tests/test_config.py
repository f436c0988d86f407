import logging

import config


def test_get_settings_reads_env(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "abc123")
    monkeypatch.setenv("FACTORY_FIND_MODEL", "gemini-2.5-pro")
    monkeypatch.setenv("FACTORY_FIND_TEMPERATURE", "0.5")
    monkeypatch.setenv("FACTORY_FIND_EXCLUSION_LIMIT", "20")
    monkeypatch.setenv("FACTORY_FIND_FALLBACK_SOURCES", "5")
    monkeypatch.setenv("FACTORY_FIND_LOG_LEVEL", "debug")

    settings = config.get_settings()

    assert settings.google_api_key == "abc123"
    assert settings.model == "gemini-2.5-pro"
    assert settings.temperature == 0.5
    assert settings.exclusion_limit == 20
    assert settings.fallback_source_limit == 5
    assert settings.log_level == "DEBUG"


def test_get_settings_falls_back_to_api_key(monkeypatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.setenv("API_KEY", "legacy-key")

    assert config.get_settings().google_api_key == "legacy-key"


def test_get_settings_warns_when_missing(monkeypatch, caplog):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)
    monkeypatch.delenv("FACTORY_FIND_EXCLUSION_LIMIT", raising=False)
    monkeypatch.delenv("FACTORY_FIND_FALLBACK_SOURCES", raising=False)

    with caplog.at_level("WARNING"):
        settings = config.get_settings()

    assert "GOOGLE_API_KEY is not configured" in " ".join(caplog.messages)
    assert settings.google_api_key == ""
    assert settings.exclusion_limit == 50
    assert settings.fallback_source_limit == 3


def test_configure_logging_does_not_stack_handlers(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "abc123")
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        config.configure_logging()
        config.configure_logging()
        added = [h for h in root.handlers if getattr(h, "_factory_find", False)]
        assert len(added) == 1
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
        root.setLevel(level)
