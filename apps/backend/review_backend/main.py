from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from .cache import TTLCache
from .catalog import CatalogService
from .config import Settings, settings as default_settings
from .logging import configure_logging, logger
from .middleware import AccessLogMiddleware, RequestIDMiddleware
from .routers import decks, health, progress, review
from .service import ReviewService
from .srs import InvalidQualityError, NotInitializedError
from .store import AppStore, create_store
from .store.ports import DeckNotFoundError


async def _not_initialized_handler(request: Request, exc: NotInitializedError) -> JSONResponse:
    logger.info(
        "review_state_not_initialized",
        learner_id=exc.learner_id,
        item_id=exc.item_id,
    )
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "item_id": exc.item_id},
    )


async def _invalid_quality_handler(request: Request, exc: InvalidQualityError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


async def _deck_not_found_handler(request: Request, exc: DeckNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def build_review_service(store: AppStore, settings: Settings) -> ReviewService:
    """ストアとキャッシュを束ねて ReviewService を組み立てる。"""

    cache = TTLCache(settings.catalog_cache_ttl_seconds)
    return ReviewService(
        review_states=store.review_states,
        catalog=CatalogService(store.catalog, cache),
        profiles=store.profiles,
        session_limit=settings.review_session_limit,
    )


def create_app(
    settings: Settings | None = None,
    *,
    store: AppStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    store を渡さない場合は settings.store_backend に従ってストアを生成する。
    """

    configure_logging()
    app_settings = settings or default_settings
    app_store = store if store is not None else create_store(app_settings)
    app = FastAPI(title="Flashcard Review API", version="0.1.0")
    app.state.settings = app_settings
    app.state.store = app_store
    app.state.review_service = build_review_service(app_store, app_settings)

    configured_origins = list(app_settings.allowed_cors_origins)
    allow_credentials = bool(configured_origins)
    if not configured_origins:
        configured_origins = ["*"]
    # ワイルドカード許可時は資格情報付き CORS を無効にする
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Starlette では後から追加したミドルウェアが外側で実行される。
    # RequestID → AccessLog の順に通るので、アクセスログにも request_id が載る。
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(NotInitializedError, _not_initialized_handler)
    app.add_exception_handler(InvalidQualityError, _invalid_quality_handler)
    app.add_exception_handler(DeckNotFoundError, _deck_not_found_handler)

    app.include_router(health.router)
    app.include_router(review.router, prefix="/api/review")
    app.include_router(decks.router, prefix="/api/decks")
    app.include_router(progress.router, prefix="/api/progress")

    logger.info(
        "app_created",
        environment=app_settings.environment,
        store_backend=app_settings.store_backend,
    )
    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
