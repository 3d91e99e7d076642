"""Tests for environment-driven settings."""

from __future__ import annotations

from billingos.config import get_settings, reset_settings_cache


def test_settings_read_stripe_values_from_environment(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setenv("STRIPE_TIMEOUT_SECONDS", "3.5")
    reset_settings_cache()
    try:
        settings = get_settings()
        assert settings.stripe_secret_key == "sk_test_123"
        assert settings.stripe_timeout_seconds == 3.5
        assert settings.stripe_max_network_retries == 0
    finally:
        reset_settings_cache()


def test_settings_are_cached():
    reset_settings_cache()
    assert get_settings() is get_settings()
    reset_settings_cache()
