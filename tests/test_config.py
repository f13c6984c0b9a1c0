"""
Tests for Configuration Management (las/config.py)

Tests cover:
- Environment variable loading
- Redis connection URL generation
- Tool list coercion (JSON, CSV, list)
"""

import pytest

from las.config import Settings


@pytest.mark.unit
class TestSettings:
    """Test Settings configuration class."""

    def test_default_settings_load(self):
        """Test that Settings loads with default values."""
        settings = Settings()

        assert settings.ROOT_DIR.exists()
        assert settings.LOGS_DIR.name == "logs"
        assert settings.REPORTS_DIR.name == "reports"

        assert settings.CACHE_PREFIX == "las_fresh_"
        assert settings.CACHE_MAX_KEY_LENGTH == 250
        assert settings.CACHE_MEMORY_LIMIT == 10 * 1024 * 1024
        assert settings.VALIDATION_THRESHOLD == 90.0

    def test_redis_url_generation(self):
        """Test Redis URL generation from settings."""
        settings = Settings(REDIS_HOST="cachehost", REDIS_PORT=6380, REDIS_DB_CACHE=3)

        assert settings.REDIS_URL == "redis://cachehost:6380/3"

    def test_values_from_env(self, temp_env_vars):
        """Test environment variables override defaults."""
        temp_env_vars["CACHE_TTL_DEFAULT"] = "60"
        temp_env_vars["USE_REDIS"] = "true"
        temp_env_vars["VALIDATION_THRESHOLD"] = "75.5"

        settings = Settings()

        assert settings.CACHE_TTL_DEFAULT == 60
        assert settings.USE_REDIS is True
        assert settings.VALIDATION_THRESHOLD == 75.5

    def test_security_defaults(self):
        """Test nonce lifetime and rate limit defaults."""
        settings = Settings()

        assert settings.SECRET_KEY
        assert settings.NONCE_LIFETIME == 86400
        assert settings.RATE_LIMIT_PER_MINUTE == 60


@pytest.mark.unit
class TestToolLists:
    """Test REQUIRED_TOOLS / OPTIONAL_TOOLS coercion."""

    def test_tool_list_from_list(self):
        settings = Settings(REQUIRED_TOOLS=["php", "node"])
        assert settings.REQUIRED_TOOLS == ["php", "node"]

    def test_tool_list_from_json_string(self, temp_env_vars):
        temp_env_vars["REQUIRED_TOOLS"] = '["php", "phpunit"]'
        assert Settings().REQUIRED_TOOLS == ["php", "phpunit"]

    def test_tool_list_from_csv_string(self, temp_env_vars):
        temp_env_vars["OPTIONAL_TOOLS"] = "node, npm ,,chromium"
        assert Settings().OPTIONAL_TOOLS == ["node", "npm", "chromium"]

    def test_required_tools_empty_by_default(self):
        assert Settings().REQUIRED_TOOLS == []
