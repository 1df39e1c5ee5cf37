import json
import time
import uuid
from typing import Dict, List, Optional

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jwt import PyJWKSet
from jwt.algorithms import RSAAlgorithm

import AuthAndScopes as auth
from config import Settings
from domain.comments import Comment, StoredComment
from main import create_app
from services.comment_store import CommentStoreError

AUTH_DOMAIN = "issuer.example.com"
AUTH_AUDIENCE = "https://comments.example.com"
KEY_ID = "test-key"


class InMemoryCommentStore:
    """Stands in for CommentStore; records calls so tests can assert on them."""

    def __init__(self):
        self.records: Dict[str, Dict[str, str]] = {}
        self.fail = False
        self.create_calls = 0
        self.delete_calls = 0

    def _check(self):
        if self.fail:
            raise CommentStoreError("store unavailable")

    async def find_by_post(self, post_id: str) -> List[Comment]:
        self._check()
        return [
            Comment(id=comment_id, **data)
            for comment_id, data in self.records.items()
            if data["postId"] == post_id
        ]

    async def create(self, post_id: str, comment: str, author: str) -> str:
        self._check()
        self.create_calls += 1
        comment_id = uuid.uuid4().hex
        self.records[comment_id] = {"postId": post_id, "comment": comment, "author": author}
        return comment_id

    async def get_by_id(self, comment_id: str) -> Optional[StoredComment]:
        self._check()
        data = self.records.get(comment_id)
        if data is None:
            return None
        return StoredComment(comment=Comment(id=comment_id, **data), reference=comment_id)

    async def delete(self, stored: StoredComment) -> None:
        self._check()
        self.delete_calls += 1
        del self.records[stored.reference]


class StaticJWKClient:
    def __init__(self, jwks: dict):
        self.jwks = jwks
        self.fetches = 0

    def get_jwk_set(self, refresh: bool = False) -> PyJWKSet:
        self.fetches += 1
        return PyJWKSet.from_dict(self.jwks)


@pytest.fixture
def store():
    return InMemoryCommentStore()


@pytest.fixture
def client(store):
    app = create_app(Settings(), store=store)
    return TestClient(app)


@pytest.fixture(scope="session")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def jwks(private_key):
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": KEY_ID, "alg": "RS256", "use": "sig"})
    return {"keys": [jwk]}


@pytest.fixture
def auth_settings():
    return Settings(auth_enabled=True, auth_domain=AUTH_DOMAIN, auth_audience=AUTH_AUDIENCE)


@pytest.fixture
def jwk_client(jwks):
    return StaticJWKClient(jwks)


@pytest.fixture
def auth_client(store, auth_settings, jwk_client):
    app = create_app(auth_settings, store=store)
    app.state.key_resolver = auth.SigningKeyResolver(auth_settings.jwks_uri, jwk_client=jwk_client)
    return TestClient(app)


@pytest.fixture
def make_token(private_key):
    def _make_token(scope="delete:comment", kid=KEY_ID, key=None, **overrides):
        now = int(time.time())
        payload = {
            "sub": "auth0|alice",
            "iss": f"https://{AUTH_DOMAIN}/",
            "aud": AUTH_AUDIENCE,
            "iat": now,
            "exp": now + 300,
        }
        if scope is not None:
            payload["scope"] = scope
        payload.update(overrides)
        return jwt.encode(payload, key or private_key, algorithm="RS256", headers={"kid": kid})
    return _make_token
