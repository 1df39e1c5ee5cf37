import logging
import threading
import time
from collections import deque
from typing import Annotated, Any, Callable, Deque, Dict, Optional, Set

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWK, PyJWKClient
from jwt.exceptions import InvalidTokenError, PyJWTError
from pydantic import BaseModel, Field

from config import DELETE_COMMENT_SCOPE, Settings, get_request_settings

ALGORITHM = "RS256"
FETCH_WINDOW_SECONDS = 60.0

logger = logging.getLogger('uvicorn.error')

bearer_scheme = HTTPBearer(auto_error=False)


class SigningKeyNotFoundError(InvalidTokenError):
    pass


class JwksRateLimitError(PyJWTError):
    pass


class TokenClaims(BaseModel):
    sub: Optional[str] = None
    scopes: Set[str] = Field(default_factory=set)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenClaims":
        return cls(sub=payload.get("sub"), scopes=parse_scopes(payload), payload=payload)


def parse_scopes(payload: Dict[str, Any]) -> Set[str]:
    """Collects granted scopes from `scope` (space separated), `scp` and `permissions`."""
    scopes: Set[str] = set()
    for claim in ("scope", "scp", "permissions"):
        value = payload.get(claim)
        if isinstance(value, str):
            scopes.update(value.split())
        elif isinstance(value, (list, tuple)):
            scopes.update(item for item in value if isinstance(item, str))
    return scopes


class SigningKeyResolver:
    """
    Resolves a token's `kid` to a public signing key from a published JWKS.

    Keys are cached for `cache_ttl` seconds. A miss or an expired cache refetches
    the key set, at most `requests_per_minute` times in any sliding minute; past
    that limit the previous keys are served as-is. The cache dict is replaced
    whole on every refresh, never mutated in place.
    """

    def __init__(
        self,
        jwks_uri: str,
        cache_ttl: float = 600.0,
        requests_per_minute: int = 5,
        jwk_client: Optional[PyJWKClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.jwks_uri = jwks_uri
        self._cache_ttl = cache_ttl
        self._requests_per_minute = requests_per_minute
        self._jwk_client = jwk_client or PyJWKClient(jwks_uri, cache_jwk_set=False)
        self._clock = clock
        self._keys: Optional[Dict[str, PyJWK]] = None
        self._fetched_at = 0.0
        self._fetch_times: Deque[float] = deque()
        self._lock = threading.Lock()

    def resolve(self, key_id: str) -> PyJWK:
        keys = self._keys
        if self._is_stale(keys, key_id, self._clock()):
            with self._lock:
                # Another thread may have refreshed while we waited
                keys = self._keys
                now = self._clock()
                if self._is_stale(keys, key_id, now):
                    keys = self._refresh(now)
        key = keys.get(key_id)
        if key is None:
            raise SigningKeyNotFoundError(f"Unable to find a signing key that matches '{key_id}'")
        return key

    def _is_stale(self, keys: Optional[Dict[str, PyJWK]], key_id: str, now: float) -> bool:
        return keys is None or now - self._fetched_at >= self._cache_ttl or key_id not in keys

    def _refresh(self, now: float) -> Dict[str, PyJWK]:
        # Caller holds self._lock
        while self._fetch_times and now - self._fetch_times[0] >= FETCH_WINDOW_SECONDS:
            self._fetch_times.popleft()
        if len(self._fetch_times) >= self._requests_per_minute:
            if self._keys is not None:
                logger.warning(f"JWKS fetch limit reached for {self.jwks_uri}; serving cached keys.")
                return self._keys
            raise JwksRateLimitError(f"Too many requests to {self.jwks_uri}")
        self._fetch_times.append(now)
        logger.info(f"Fetching signing keys from {self.jwks_uri}")
        jwk_set = self._jwk_client.get_jwk_set(refresh=True)
        keys = {jwk.key_id: jwk for jwk in jwk_set.keys if jwk.key_id}
        self._keys = keys
        self._fetched_at = now
        return keys


def verify_access_token(token: str, resolver: SigningKeyResolver, settings: Settings) -> TokenClaims:
    header = jwt.get_unverified_header(token)
    if header.get("alg") != ALGORITHM:
        raise InvalidTokenError(f"Unsupported signing algorithm {header.get('alg')!r}")
    key_id = header.get("kid")
    if not key_id:
        raise InvalidTokenError("Token header has no 'kid'")
    signing_key = resolver.resolve(key_id)
    payload = jwt.decode(
        token,
        signing_key.key,
        algorithms=[ALGORITHM],
        audience=settings.auth_audience,
        issuer=settings.issuer,
        options={"require": ["exp"]},
    )
    return TokenClaims.from_payload(payload)


def get_key_resolver(request: Request) -> SigningKeyResolver:
    resolver = getattr(request.app.state, 'key_resolver', None)
    if resolver is None:
        logger.error("Signing key resolver not initialized.")
        raise HTTPException(status_code=503, detail="Authorization service unavailable")
    return resolver


def get_token_claims(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    resolver: Annotated[SigningKeyResolver, Depends(get_key_resolver)],
    settings: Annotated[Settings, Depends(get_request_settings)],
) -> TokenClaims:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return verify_access_token(credentials.credentials, resolver, settings)
    except PyJWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_scope(scope: str):
    def check_scope(claims: Annotated[TokenClaims, Depends(get_token_claims)]) -> TokenClaims:
        if scope not in claims.scopes:
            logger.warning(f"Subject '{claims.sub}' lacks required scope '{scope}'")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient scope")
        return claims
    return check_scope


require_delete_comment_scope = require_scope(DELETE_COMMENT_SCOPE)
