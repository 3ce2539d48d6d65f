"""
Tests for configuration and .env loading.
"""

import os
from pathlib import Path

import pytest

from intake.config import IntakeConfig, ReferenceData
from intake.env import load_env

INTAKE_VARS = (
    "INTAKE_DEBOUNCE_MS",
    "INTAKE_DUPLICATE_THRESHOLD",
    "INTAKE_SEARCH_LIMIT",
    "INTAKE_API_BASE_URL",
    "INTAKE_API_TIMEOUT",
    "INTAKE_API_TOKEN",
    "INTAKE_LOG_LEVEL",
    "INTAKE_LOG_DIR",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in INTAKE_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield monkeypatch
    # load_dotenv writes os.environ directly
    for name in INTAKE_VARS:
        os.environ.pop(name, None)


class TestIntakeConfig:
    """Test config defaults and checks."""

    def test_defaults(self):
        config = IntakeConfig()

        assert config.debounce_ms == 300
        assert config.duplicate_threshold == 70.0
        assert config.search_limit == 20
        assert config.reference == ReferenceData()

    @pytest.mark.parametrize("changes", [
        {"debounce_ms": -1},
        {"duplicate_threshold": 101.0},
        {"duplicate_threshold": -0.5},
        {"search_limit": 0},
    ])
    def test_rejects_bad_values(self, changes):
        with pytest.raises(ValueError):
            IntakeConfig(**changes)

    def test_with_overrides_returns_copy(self):
        config = IntakeConfig()
        faster = config.with_overrides(debounce_ms=50)

        assert faster.debounce_ms == 50
        assert config.debounce_ms == 300

    def test_frozen(self):
        config = IntakeConfig()
        with pytest.raises(Exception):
            config.debounce_ms = 1


class TestFromEnv:
    """Test reading INTAKE_* variables."""

    def test_unset_keeps_defaults(self, clean_env):
        assert IntakeConfig.from_env() == IntakeConfig()

    def test_reads_variables(self, clean_env, tmp_path):
        clean_env.setenv("INTAKE_DEBOUNCE_MS", "150")
        clean_env.setenv("INTAKE_DUPLICATE_THRESHOLD", "80")
        clean_env.setenv("INTAKE_API_BASE_URL", "http://api.test/api/v1")
        clean_env.setenv("INTAKE_LOG_DIR", str(tmp_path / "logs"))

        config = IntakeConfig.from_env()

        assert config.debounce_ms == 150
        assert config.duplicate_threshold == 80.0
        assert config.api_base_url == "http://api.test/api/v1"
        assert config.log_dir == tmp_path / "logs"

    def test_reads_dotenv_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("INTAKE_SEARCH_LIMIT=5\nINTAKE_API_TOKEN=abc\n")

        config = IntakeConfig.from_env(env_file)

        assert config.search_limit == 5
        assert config.api_token == "abc"

    def test_environment_wins_over_file(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("INTAKE_SEARCH_LIMIT=5\n")
        clean_env.setenv("INTAKE_SEARCH_LIMIT", "9")

        assert IntakeConfig.from_env().search_limit == 9


class TestLoadEnv:
    """Test .env discovery."""

    def test_missing_file(self, clean_env):
        assert load_env() is False

    def test_explicit_path(self, clean_env, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("INTAKE_LOG_LEVEL=DEBUG\n")

        assert load_env(Path(env_file)) is True
