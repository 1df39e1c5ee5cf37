import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from google.cloud import firestore
from google.oauth2 import service_account
from starlette.exceptions import HTTPException as StarletteHTTPException

import AuthAndScopes as auth
import secretmanager
from config import Settings, get_settings
from services.comment_store import CommentStore

# Import routers
from routers import comments

logger = logging.getLogger('uvicorn.error')


def create_firestore_client(settings: Settings) -> firestore.AsyncClient:
    credentials = None
    if settings.firestore_credentials_secret:
        credentials = service_account.Credentials.from_service_account_info(
            secretmanager.get_service_account_info(settings.firestore_credentials_secret)
        )
        logger.info("Loaded Firestore credentials from Secret Manager.")
    return firestore.AsyncClient(
        project=settings.firestore_project,
        credentials=credentials,
        database=settings.firestore_database,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup: Initializing resources...")
    settings: Settings = app.state.settings
    if getattr(app.state, 'store', None) is None:
        try:
            app.state.db = create_firestore_client(settings)
            app.state.store = CommentStore(
                app.state.db,
                collection=settings.comments_collection,
                timeout=settings.store_timeout_seconds,
            )
            logger.info("Firestore Async client initialized.")
        except Exception as e:
            logger.error(f"Failed to initialize Firestore Async client: {e}")
            app.state.db = None
            app.state.store = None

    yield
    logger.info("Application shutdown: Cleaning up resources...")
    if getattr(app.state, 'db', None):
        try:
            await app.state.db.close()
            logger.info("Firestore Async client closed.")
        except Exception as e:
            logger.error(f"Error closing Firestore client: {e}")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, 'headers', None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # The create body is the only validated input
    if request.method == "POST":
        message = comments.MISSING_FIELDS_MESSAGE
    else:
        message = "Invalid request"
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"message": message})


def create_app(settings: Optional[Settings] = None, store: Optional[CommentStore] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="Comments API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.key_resolver = None

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(comments.router)
    if settings.auth_enabled:
        app.state.key_resolver = auth.SigningKeyResolver(
            settings.jwks_uri,
            cache_ttl=settings.jwks_cache_ttl_seconds,
            requests_per_minute=settings.jwks_requests_per_minute,
        )
        app.include_router(
            comments.delete_router,
            dependencies=[Depends(auth.require_delete_comment_scope)],
        )
        logger.info(f"Delete route requires scope '{auth.DELETE_COMMENT_SCOPE}' from {settings.issuer}")
    else:
        app.include_router(comments.delete_router)

    app.add_middleware(
        TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
