"""
Tests for environment configuration.
"""

import pytest

from config import Config, ConfigurationError, DEFAULT_DENIAL_REASONS, reload_config


class TestDefaults:

    def test_defaults(self, clean_env):
        config = Config()

        assert config.store.backend == "memory"
        assert config.pricing.fee_per_kilometer == 15.0
        assert config.pricing.free_radius_km == 0.5
        assert config.restaurant.timezone_name == "Asia/Manila"
        assert config.restaurant.denial_reason_presets == list(DEFAULT_DENIAL_REASONS)

    def test_safe_summary_has_no_secrets(self, clean_env):
        clean_env.setenv("SUPABASE_KEY", "super-secret")
        summary = Config().get_safe_summary()
        assert "super-secret" not in repr(summary)

    def test_reload_picks_up_changes(self, clean_env):
        clean_env.setenv("PLATFORM_FEE", "12.5")
        assert reload_config().pricing.platform_fee == 12.5


class TestValidation:

    def test_supabase_backend_requires_credentials(self, clean_env):
        clean_env.setenv("STORE_BACKEND", "supabase")
        with pytest.raises(ConfigurationError):
            Config()

    def test_supabase_url_must_be_https(self, clean_env):
        clean_env.setenv("STORE_BACKEND", "supabase")
        clean_env.setenv("SUPABASE_URL", "http://example.supabase.co")
        clean_env.setenv("SUPABASE_KEY", "key")
        with pytest.raises(ConfigurationError):
            Config()

    @pytest.mark.parametrize("key, value", [
        ("STORE_BACKEND", "redis"),
        ("PLATFORM_FEE", "-1"),
        ("PLATFORM_FEE", "ten"),
        ("AVERAGE_PREP_TIME", "soon"),
        ("DELIVERY_FREE_RADIUS_KM", "2"),
        ("RESTAURANT_TIMEZONE", "Mars/Olympus_Mons"),
        ("LOG_LEVEL", "LOUD"),
    ])
    def test_invalid_values(self, clean_env, key, value):
        clean_env.setenv(key, value)
        with pytest.raises(ConfigurationError):
            Config()

    def test_denial_presets_from_env(self, clean_env):
        clean_env.setenv("DENIAL_REASON_PRESETS", " Closed | Too far ||")
        assert Config().restaurant.denial_reason_presets == ["Closed", "Too far"]
