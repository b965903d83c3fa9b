import pytest
from structlog.testing import capture_logs
from pydantic import ValidationError

from claimflow import config
from claimflow.config import DEFAULT_POLICY_PATH, Settings, load_settings, settings_from_dict
from claimflow.errors import ConfigError
from claimflow.service import ClaimService


def test_shipped_policy_matches_defaults():
    assert DEFAULT_POLICY_PATH.exists()
    loaded = load_settings()
    defaults = Settings()
    assert loaded.policy.category_limits == defaults.policy.category_limits
    assert loaded.risk.threshold_amounts == defaults.risk.threshold_amounts
    assert loaded.risk.keywords == defaults.risk.keywords
    assert loaded.validation.categories == defaults.validation.categories
    assert loaded.retry.policy_attempts == 2
    assert loaded.retry.risk_attempts == 3


def test_partial_override(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("retry:\n  risk_attempts: 7\nrisk:\n  keywords: [bogus]\n")
    settings = load_settings(path)
    assert settings.retry.risk_attempts == 7
    assert settings.retry.policy_attempts == 2
    assert settings.risk.keywords == ("bogus",)


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("")
    assert load_settings(path) == Settings()


def test_empty_section_gives_defaults():
    assert settings_from_dict({"retry": None}).retry.risk_attempts == 3


def test_unknown_keys_are_rejected():
    with pytest.raises(ConfigError):
        settings_from_dict({"retry": {"risk_attempt": 3}})
    with pytest.raises(ConfigError):
        settings_from_dict({"metrics": {}})


def test_mistyped_values_are_rejected(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("policy:\n  category_limits:\n    meals: seventy\n")
    with pytest.raises(ConfigError, match="category_limits"):
        load_settings(path)
    with pytest.raises(ConfigError):
        settings_from_dict({"retry": {"risk_attempts": 0}})
    with pytest.raises(ConfigError):
        settings_from_dict({"chaos": {"steps": "risk_score"}})


def test_numeric_strings_are_coerced(tmp_path, lunch):
    path = tmp_path / "policy.yaml"
    path.write_text('policy:\n  category_limits:\n    meals: "75"\nretry:\n  risk_attempts: "3"\n')
    settings = load_settings(path)
    assert settings.policy.category_limits == {"meals": 75.0}
    assert settings.retry.risk_attempts == 3

    result = ClaimService(settings).submit(lunch)
    assert result.outcome == "APPROVED"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.yaml")


def test_settings_are_frozen():
    settings = Settings()
    with pytest.raises(ValidationError):
        settings.retry.risk_attempts = 10


def test_missing_default_policy_warns(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "DEFAULT_POLICY_PATH", tmp_path / "absent.yaml")
    with capture_logs() as logs:
        assert load_settings() == Settings()
    assert [e["event"] for e in logs] == ["policy_file_missing"]
    assert logs[0]["log_level"] == "warning"
