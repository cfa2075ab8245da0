"""Tests for application configuration."""
from core.config import Settings


class TestCorsOriginsParsing:
    """Tests for CORS origins parsing from environment variables."""

    def test_parse_single_origin_string(self) -> None:
        """Single origin string is parsed correctly."""
        settings = Settings(
            database_url="postgresql://test",
            cors_origins="http://localhost:3000",
        )
        assert settings.cors_origins == ["http://localhost:3000"]

    def test_parse_multiple_origins_with_whitespace(self) -> None:
        """Comma-separated origins are split and stripped."""
        settings = Settings(
            database_url="postgresql://test",
            cors_origins="  http://localhost:3000 , https://example.com  ",
        )
        assert settings.cors_origins == [
            "http://localhost:3000",
            "https://example.com",
        ]

    def test_parse_origins_list_passthrough(self) -> None:
        """List of origins is passed through unchanged."""
        origins = ["http://localhost:3000", "https://example.com"]
        settings = Settings(database_url="postgresql://test", cors_origins=origins)
        assert settings.cors_origins == origins

    def test_parse_empty_string_and_trailing_comma(self) -> None:
        """Empty entries are filtered out."""
        assert Settings(database_url="postgresql://test", cors_origins="").cors_origins == []
        settings = Settings(database_url="postgresql://test", cors_origins="http://a.com,")
        assert settings.cors_origins == ["http://a.com"]

    def test_parse_from_environment(self, monkeypatch) -> None:  # noqa: ANN001
        """A comma-separated CORS_ORIGINS variable is not JSON-decoded."""
        monkeypatch.setenv("CORS_ORIGINS", "http://a.com,http://b.com")
        settings = Settings(_env_file=None, database_url="postgresql://test")
        assert settings.cors_origins == ["http://a.com", "http://b.com"]


class TestDefaults:
    """Tests for default values of the auth and realtime settings."""

    def test_auth_defaults(self) -> None:
        """Email confirmation is required and sessions last a day by default."""
        settings = Settings(_env_file=None, database_url="postgresql://test")
        assert settings.require_email_confirmation is True
        assert settings.session_duration_hours == 24
        assert settings.dev_mode is False

    def test_realtime_defaults(self) -> None:
        """Heartbeat and queue size have sensible defaults."""
        settings = Settings(_env_file=None, database_url="postgresql://test")
        assert settings.realtime_heartbeat_seconds == 15.0
        assert settings.realtime_queue_size == 100

    def test_redis_can_be_disabled_from_environment(self, monkeypatch) -> None:  # noqa: ANN001
        """REDIS_ENABLED=false disables Redis."""
        monkeypatch.setenv("REDIS_ENABLED", "false")
        settings = Settings(_env_file=None, database_url="postgresql://test")
        assert settings.redis_enabled is False
