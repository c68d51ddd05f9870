"""Tests for Settings."""

from __future__ import annotations

import pytest

from devlease.config import Settings


class TestSettings:
    def test_derived_values(self, settings: Settings) -> None:
        assert settings.cloud_host == "cloud.test"
        assert settings.max_attempts == 4

    def test_zero_retries_still_tries_once(self) -> None:
        assert Settings(flash_retries=0).max_attempts == 1

    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVLEASE_FLASH_PROJECT_NAME", "flash-b2g")
        monkeypatch.setenv("DEVLEASE_SESSION_CONFLICT_STATUS", "409")

        settings = Settings()

        assert settings.flash_project_name == "flash-b2g"
        assert settings.session_conflict_status == 409
