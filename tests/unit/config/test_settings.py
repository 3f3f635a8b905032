# tests/unit/config/test_settings.py — v1
"""Tests for config/settings.py — typed Settings and validation rules."""

from __future__ import annotations

import pytest

from pulsecollect.config.settings import ConfigurationError, Settings, load_settings


class TestSettingsDefaults:
    def test_default_planner(self):
        s = Settings(_env_file=None)
        assert s.llm_provider in ("openai", "anthropic")
        assert s.llm_temperature == 0.2

    def test_default_operational_limits(self):
        s = Settings(_env_file=None)
        assert s.batch_size == 15
        assert s.max_expansions == 1
        assert s.max_pages_per_stage == 20

    def test_default_budget(self):
        s = Settings(_env_file=None, host_execution_limit_s=360, safety_margin_s=60)
        assert s.execution_budget_s == 300.0

    def test_default_backends(self):
        s = Settings(_env_file=None, checkpoint_backend="json", artifact_backend="local")
        assert s.checkpoint_backend == "json"
        assert s.artifact_backend == "local"


class TestSourceHelpers:
    def test_source_order_list_strips_blanks(self):
        s = Settings(_env_file=None, source_order=" x , ,tiktok ")
        assert s.source_order_list == ["x", "tiktok"]

    def test_source_configuration(self):
        s = Settings(
            _env_file=None,
            x_api_key="key",
            meta_access_token="token",
            ig_user_id="",
            tiktok_client_key="ck",
            tiktok_client_secret="cs",
        )
        assert s.source_configuration() == {"instagram": False, "x": True, "tiktok": True}

    def test_missing_keys_ignored_in_mock_mode(self):
        s = Settings(_env_file=None, use_mocks=True, openai_api_key="")
        assert s.missing_required_keys() == []

    def test_missing_keys_follow_provider(self):
        s = Settings(
            _env_file=None, use_mocks=False, llm_provider="anthropic", anthropic_api_key="",
        )
        assert s.missing_required_keys() == ["ANTHROPIC_API_KEY"]


class TestSettingsValidation:
    def test_margin_must_be_below_limit(self):
        with pytest.raises(ConfigurationError, match="SAFETY_MARGIN_S"):
            Settings(_env_file=None, host_execution_limit_s=60, safety_margin_s=60)

    def test_redis_backend_needs_url(self):
        with pytest.raises(ConfigurationError, match="CHECKPOINT_REDIS_URL"):
            Settings(_env_file=None, checkpoint_backend="redis", checkpoint_redis_url="")

    def test_s3_backend_needs_bucket(self):
        with pytest.raises(ConfigurationError, match="ARTIFACT_S3_BUCKET"):
            Settings(_env_file=None, artifact_backend="s3", artifact_s3_bucket="")

    def test_unknown_source(self):
        with pytest.raises(ConfigurationError, match="facebook"):
            Settings(_env_file=None, source_order="x,facebook")

    def test_errors_are_joined(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Settings(
                _env_file=None,
                checkpoint_backend="redis",
                checkpoint_redis_url="",
                source_order="myspace",
            )
        assert "CHECKPOINT_REDIS_URL" in str(exc_info.value)
        assert "myspace" in str(exc_info.value)

    @pytest.mark.parametrize("field", ["batch_size", "max_pages_per_stage", "retention_keep"])
    def test_positive_fields(self, field):
        with pytest.raises(ValueError, match="must be >= 1"):
            Settings(_env_file=None, **{field: 0})

    def test_negative_expansions(self):
        with pytest.raises(ValueError, match="must be >= 0"):
            Settings(_env_file=None, max_expansions=-1)

    def test_zero_expansions_allowed(self):
        assert Settings(_env_file=None, max_expansions=0).max_expansions == 0


class TestLoadSettings:
    def test_overrides(self):
        s = load_settings(_env_file=None, batch_size=7, use_mocks=True)
        assert s.batch_size == 7
        assert s.use_mocks is True

    def test_env_variables(self, monkeypatch):
        monkeypatch.setenv("BATCH_SIZE", "9")
        monkeypatch.setenv("SOURCE_ORDER", "tiktok,x")
        s = load_settings(_env_file=None)
        assert s.batch_size == 9
        assert s.source_order_list == ["tiktok", "x"]

    def test_env_file(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("X_API_KEY=from-file\nMAX_RETRIES=5\n", encoding="utf-8")
        s = load_settings(_env_file=env)
        assert s.x_api_key == "from-file"
        assert s.max_retries == 5
