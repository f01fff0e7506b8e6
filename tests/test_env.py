import pytest

import env


@pytest.fixture(autouse=True)
def fresh_settings():
    env.get_settings.cache_clear()
    yield
    env.get_settings.cache_clear()


def test_defaults(monkeypatch):
    for key in env._KEYS:
        monkeypatch.delenv(key, raising=False)

    settings = env.get_settings()

    assert settings.AWS_REGION == "us-east-1"
    assert settings.AWS_MONTHLY_LIMIT == 1000
    assert settings.FACEPP_MONTHLY_LIMIT == 30000
    assert settings.FACEPP_RATE_LIMIT_PER_MINUTE == 20
    assert settings.FACEPP_TIMEOUT_SECONDS == 10.0
    assert settings.FACEPP_API_KEY is None
    assert settings.USAGE_FILE == "api-usage.json"


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("FACEPP_RATE_LIMIT_PER_MINUTE", "5")
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    monkeypatch.setenv("FACEPP_API_KEY", "abc")

    settings = env.get_settings()

    assert settings.FACEPP_RATE_LIMIT_PER_MINUTE == 5
    assert settings.AWS_REGION == "eu-west-1"
    assert settings.FACEPP_API_KEY == "abc"


def test_settings_are_cached(monkeypatch):
    first = env.get_settings()
    monkeypatch.setenv("PORT", "9999")

    assert env.get_settings() is first


def test_invalid_values_fail_fast(monkeypatch):
    monkeypatch.setenv("AWS_MONTHLY_LIMIT", "lots")
    monkeypatch.setenv("FACEPP_TIMEOUT_SECONDS", "0")

    with pytest.raises(RuntimeError) as exc_info:
        env.get_settings()

    assert "AWS_MONTHLY_LIMIT" in str(exc_info.value)
    assert "FACEPP_TIMEOUT_SECONDS" in str(exc_info.value)
