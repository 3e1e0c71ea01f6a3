from __future__ import annotations

from pathlib import Path

import pytest

from roulette.settings import Settings, load_settings

_VARS = (
    "ROULETTE_GRACE_PERIOD_SECONDS",
    "ROULETTE_SPIN_DELAY_SECONDS",
    "ROULETTE_ROOM_MAX_AGE_SECONDS",
    "ROULETTE_JANITOR_INTERVAL_SECONDS",
    "ROULETTE_LOG_LEVEL",
    "ROULETTE_CORS_ORIGINS",
    "PORT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # setenv first so monkeypatch restores the prior state, including
    # anything load_dotenv writes during the test.
    for var in _VARS:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


def test_defaults(tmp_path: Path) -> None:
    assert load_settings(env_file=tmp_path / "missing.env") == Settings()


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ROULETTE_GRACE_PERIOD_SECONDS", "5")
    monkeypatch.setenv("ROULETTE_LOG_LEVEL", "debug")
    monkeypatch.setenv("ROULETTE_CORS_ORIGINS", "https://a.example, https://b.example,")
    monkeypatch.setenv("PORT", "8080")

    s = load_settings(env_file=tmp_path / "missing.env")

    assert s.grace_period_seconds == 5.0
    assert s.spin_delay_seconds == 0.5
    assert s.log_level == "DEBUG"
    assert s.cors_origins == ("https://a.example", "https://b.example")
    assert s.port == 8080


def test_dotenv_file_does_not_override_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env = tmp_path / ".env"
    env.write_text("ROULETTE_SPIN_DELAY_SECONDS=2\nROULETTE_GRACE_PERIOD_SECONDS=9\n")
    monkeypatch.setenv("ROULETTE_GRACE_PERIOD_SECONDS", "1")

    s = load_settings(env_file=env)

    assert s.spin_delay_seconds == 2.0
    assert s.grace_period_seconds == 1.0
