import pytest
from pydantic import ValidationError

from config import Settings


def test_defaults(monkeypatch):
    for name in ("PORT", "AUTH_ENABLED", "CORS_ALLOW_ORIGINS", "COMMENTS_COLLECTION", "LEGACY_LIST_ERRORS"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.port == 8000
    assert settings.auth_enabled is False
    assert settings.cors_allow_origins == ["*"]
    assert settings.comments_collection == "comments"
    assert settings.legacy_list_errors is False


def test_from_env(monkeypatch):
    monkeypatch.setenv("PORT", "3000")
    monkeypatch.setenv("AUTH_ENABLED", "true")
    monkeypatch.setenv("AUTH_DOMAIN", "issuer.example.com")
    monkeypatch.setenv("AUTH_AUDIENCE", "https://comments.example.com")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example.com, https://b.example.com")
    monkeypatch.setenv("JWKS_REQUESTS_PER_MINUTE", "10")
    settings = Settings.from_env()
    assert settings.port == 3000
    assert settings.auth_enabled is True
    assert settings.issuer == "https://issuer.example.com/"
    assert settings.jwks_uri == "https://issuer.example.com/.well-known/jwks.json"
    assert settings.cors_allow_origins == ["https://a.example.com", "https://b.example.com"]
    assert settings.jwks_requests_per_minute == 10


def test_auth_requires_domain_and_audience():
    with pytest.raises(ValidationError):
        Settings(auth_enabled=True, auth_domain="issuer.example.com")
