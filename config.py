import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Request
from pydantic import BaseModel, Field, model_validator

load_dotenv()

DELETE_COMMENT_SCOPE = "delete:comment"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    port: int = 8000

    firestore_project: Optional[str] = None
    firestore_database: Optional[str] = None
    firestore_credentials_secret: Optional[str] = None
    comments_collection: str = "comments"
    store_timeout_seconds: float = Field(default=30.0, gt=0)

    auth_enabled: bool = False
    auth_domain: Optional[str] = None
    auth_audience: Optional[str] = None
    jwks_cache_ttl_seconds: float = Field(default=600.0, ge=0)
    jwks_requests_per_minute: int = Field(default=5, ge=1)

    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    trusted_hosts: List[str] = Field(default_factory=lambda: ["*"])
    legacy_list_errors: bool = False

    @model_validator(mode="after")
    def check_auth_settings(self):
        if self.auth_enabled and not (self.auth_domain and self.auth_audience):
            raise ValueError("AUTH_DOMAIN and AUTH_AUDIENCE are required when AUTH_ENABLED is set")
        return self

    @property
    def issuer(self) -> str:
        return f"https://{self.auth_domain}/"

    @property
    def jwks_uri(self) -> str:
        return f"https://{self.auth_domain}/.well-known/jwks.json"

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "port": os.getenv("PORT", "8000"),
            "firestore_project": os.getenv("FIRESTORE_PROJECT") or None,
            "firestore_database": os.getenv("FIRESTORE_DATABASE") or None,
            "firestore_credentials_secret": os.getenv("FIRESTORE_CREDENTIALS_SECRET") or None,
            "comments_collection": os.getenv("COMMENTS_COLLECTION", "comments"),
            "store_timeout_seconds": os.getenv("STORE_TIMEOUT_SECONDS", "30"),
            "auth_enabled": _env_bool("AUTH_ENABLED"),
            "auth_domain": os.getenv("AUTH_DOMAIN") or None,
            "auth_audience": os.getenv("AUTH_AUDIENCE") or None,
            "jwks_cache_ttl_seconds": os.getenv("JWKS_CACHE_TTL_SECONDS", "600"),
            "jwks_requests_per_minute": os.getenv("JWKS_REQUESTS_PER_MINUTE", "5"),
            "cors_allow_origins": _env_list("CORS_ALLOW_ORIGINS", "*"),
            "trusted_hosts": _env_list("TRUSTED_HOSTS", "*"),
            "legacy_list_errors": _env_bool("LEGACY_LIST_ERRORS"),
        }
        return cls(**values)


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


def get_request_settings(request: Request) -> Settings:
    return getattr(request.app.state, 'settings', None) or get_settings()
