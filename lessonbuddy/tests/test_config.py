"""Tests for environment-driven settings."""

import pytest

from lessonbuddy.config import (
    DEFAULT_TAP_APPROVE_PROBABILITY,
    DEFAULT_VALIDATION_INTERVAL_MS,
    Settings,
    load_settings,
)

ENV_VARS = (
    "OPENAI_API_KEY",
    "LESSONBUDDY_CLASSIFIER_MODEL",
    "FIREBASE_CREDENTIALS_PATH",
    "LESSONBUDDY_DURATION_TICK_MS",
    "LESSONBUDDY_VALIDATION_INTERVAL_MS",
    "LESSONBUDDY_ADVANCE_GRACE_MS",
    "LESSONBUDDY_TAP_APPROVE_PROBABILITY",
    "LESSONBUDDY_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = load_settings(dotenv=False)
    assert settings == Settings()


def test_values_from_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-1234567890abcd")
    monkeypatch.setenv("LESSONBUDDY_CLASSIFIER_MODEL", "gpt-4o")
    monkeypatch.setenv("LESSONBUDDY_VALIDATION_INTERVAL_MS", "1500")
    monkeypatch.setenv("LESSONBUDDY_TAP_APPROVE_PROBABILITY", "0.25")
    monkeypatch.setenv("LESSONBUDDY_DEBUG", "off")

    settings = load_settings(dotenv=False)

    assert settings.openai_api_key == "sk-test-1234567890abcd"
    assert settings.classifier_model == "gpt-4o"
    assert settings.validation_interval_ms == 1500
    assert settings.tap_approve_probability == 0.25
    assert settings.debug is False


@pytest.mark.parametrize("raw", ["soon", "0", "-5"])
def test_bad_interval_falls_back_to_default(monkeypatch, raw):
    monkeypatch.setenv("LESSONBUDDY_VALIDATION_INTERVAL_MS", raw)
    assert load_settings(dotenv=False).validation_interval_ms == DEFAULT_VALIDATION_INTERVAL_MS


@pytest.mark.parametrize("raw", ["often", "1.5", "-0.1"])
def test_bad_probability_falls_back_to_default(monkeypatch, raw):
    monkeypatch.setenv("LESSONBUDDY_TAP_APPROVE_PROBABILITY", raw)
    assert load_settings(dotenv=False).tap_approve_probability == DEFAULT_TAP_APPROVE_PROBABILITY


def test_masked_api_key():
    assert Settings(openai_api_key="sk-abcdefgh12345678").masked_api_key == "sk-abcde...5678"
    assert Settings(openai_api_key="short").masked_api_key == "***"
    assert Settings().masked_api_key == ""
