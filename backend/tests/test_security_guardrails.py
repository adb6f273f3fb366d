import pytest

from core import config as config_module
from core.security import actor_from_user, create_access_token, decode_access_token


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    config_module.get_settings.cache_clear()
    yield
    config_module.get_settings.cache_clear()


def test_non_local_debug_mode_is_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("JWT_SECRET", "real-secret")

    with pytest.raises(ValueError, match="debug=true"):
        config_module.get_settings()


def test_non_local_default_secret_is_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "staging")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("JWT_SECRET", config_module.DEFAULT_JWT_SECRET)

    with pytest.raises(ValueError, match="default JWT secret"):
        config_module.get_settings()


def test_local_allows_dev_defaults(monkeypatch):
    monkeypatch.setenv("APP_ENV", "local")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("JWT_SECRET", config_module.DEFAULT_JWT_SECRET)

    settings = config_module.get_settings()
    assert settings.app_env == "local"
    assert settings.handoff_column == "Purchased"


def test_workflow_settings_from_env(monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("TRANSITION_MAX_RETRIES", "5")
    monkeypatch.setenv("THRESHOLD_EQUALITY_EPSILON", "0.5")

    settings = config_module.get_settings()
    assert settings.transition_max_retries == 5
    assert settings.threshold_equality_epsilon == 0.5


def test_token_round_trip_identifies_actor():
    token = create_access_token({"sub": "auth0|abc", "email": "buyer@invenflow.test"})
    payload = decode_access_token(token)
    assert actor_from_user(payload) == "buyer@invenflow.test"


def test_tampered_token_is_rejected():
    token = create_access_token({"sub": "auth0|abc"})
    assert decode_access_token(token + "x") is None


def test_actor_falls_back_to_subject():
    assert actor_from_user({"sub": "auth0|abc"}) == "auth0|abc"
    assert actor_from_user({}) is None
