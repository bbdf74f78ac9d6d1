"""Unit tests for settings."""

import pytest
from pydantic import ValidationError

from orchestra.core.config import Settings, get_settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ORCHESTRA_MAX_RETRIES", raising=False)

        settings = Settings(_env_file=None)

        assert settings.orchestra_max_retries == 3
        assert settings.orchestra_max_parallel_tasks == 5
        assert settings.orchestra_task_timeout == 1800
        assert settings.orchestra_auto_retry is True

    def test_environment_override(
        self,
        monkeypatch: pytest.MonkeyPatch,
        mock_settings: None,
    ) -> None:
        monkeypatch.setenv("ORCHESTRA_MAX_PARALLEL_TASKS", "8")
        monkeypatch.setenv("ORCHESTRA_AUTO_RETRY", "false")

        settings = get_settings()

        assert settings.orchestra_max_parallel_tasks == 8
        assert settings.orchestra_auto_retry is False
        assert get_settings() is settings

    def test_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Settings(orchestra_max_parallel_tasks=0)
        with pytest.raises(ValidationError):
            Settings(orchestra_max_retries=-1)

    def test_is_sqlite(self) -> None:
        assert Settings(database_url="sqlite+aiosqlite:///:memory:").is_sqlite
        assert not Settings(
            database_url="postgresql+asyncpg://orchestra@localhost/orchestra"
        ).is_sqlite
