"""Entry point for the Reelshelf FastAPI application."""

from __future__ import annotations

import logging
import secrets
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import Database
from .errors import ReelshelfError
from .models import (
    AddMovieRequest,
    LoginRequest,
    RegisterRequest,
    RemoveMovieRequest,
    SearchByIdRequest,
    UpdateGenresRequest,
    UpdateStatusRequest,
    UserIdentity,
)
from .services.auth import AuthService, bearer_token
from .services.collection_store import CollectionStore
from .services.collections import CollectionManager
from .services.recommendations import RecommendationAggregator
from .services.tmdb import TMDBClient

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)

DEGRADED_HEADER = "X-Recommendations-Degraded"

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(settings.tmdb_timeout_seconds, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    jwt_secret = settings.jwt_secret
    if not jwt_secret:
        logger.warning(
            "JWT_SECRET is not configured; issued tokens will not survive a restart"
        )
        jwt_secret = secrets.token_urlsafe(32)

    catalog = TMDBClient(settings, tmdb_http_client)
    store = CollectionStore(database.session_factory)

    fastapi_app.state.database = database
    fastapi_app.state.catalog = catalog
    fastapi_app.state.collections = CollectionManager(store)
    fastapi_app.state.recommendations = RecommendationAggregator(
        settings, catalog, store
    )
    fastapi_app.state.auth = AuthService(
        settings, database.session_factory, secret=jwt_secret
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Personal movie collection with TMDB-powered recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
        expose_headers=[DEGRADED_HEADER],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _state_service(fastapi_app: FastAPI, name: str, expected: type) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{expected.__name__} not initialised")
    return service


def get_catalog(fastapi_app: FastAPI) -> TMDBClient:
    return _state_service(fastapi_app, "catalog", TMDBClient)


def get_collection_manager(fastapi_app: FastAPI) -> CollectionManager:
    return _state_service(fastapi_app, "collections", CollectionManager)


def get_recommendation_aggregator(fastapi_app: FastAPI) -> RecommendationAggregator:
    return _state_service(fastapi_app, "recommendations", RecommendationAggregator)


def get_auth_service(fastapi_app: FastAPI) -> AuthService:
    return _state_service(fastapi_app, "auth", AuthService)


async def current_user(
    request: Request, authorization: str | None = Header(default=None)
) -> UserIdentity:
    """Resolve the caller from the ``Authorization: Bearer`` header."""

    auth = get_auth_service(request.app)
    return await auth.verify(bearer_token(authorization))


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(ReelshelfError)
    async def reelshelf_error_handler(_: Request, exc: ReelshelfError) -> JSONResponse:
        return JSONResponse(
            {"success": False, "message": exc.message}, status_code=exc.status_code
        )

    @fastapi_app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            {
                "success": False,
                "message": "Invalid request",
                "errors": jsonable_encoder(exc.errors()),
            },
            status_code=422,
        )

    @fastapi_app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"success": False, "message": "Internal server error"}, status_code=500
        )

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/users/register", status_code=201)
    async def register_user(payload: RegisterRequest) -> dict[str, Any]:
        user, token = await get_auth_service(fastapi_app).register(payload)
        return {"success": True, "token": token, "user": user.to_payload()}

    @fastapi_app.post("/users/login")
    async def login_user(payload: LoginRequest) -> dict[str, Any]:
        user, token = await get_auth_service(fastapi_app).login(
            payload.email, payload.password
        )
        return {"success": True, "token": token, "user": user.to_payload()}

    @fastapi_app.get("/users/me")
    async def read_profile(
        identity: UserIdentity = Depends(current_user),
    ) -> dict[str, Any]:
        user = await get_auth_service(fastapi_app).get_profile(identity.id)
        return {"success": True, "user": user.to_payload()}

    @fastapi_app.put("/users/me/genres")
    async def update_genres(
        payload: UpdateGenresRequest,
        identity: UserIdentity = Depends(current_user),
    ) -> dict[str, Any]:
        user = await get_auth_service(fastapi_app).update_genres(
            identity.id, payload.genres
        )
        return {"success": True, "user": user.to_payload()}

    @fastapi_app.get("/movies/search")
    async def search_movies(title: str) -> list[dict[str, Any]]:
        items = await get_catalog(fastapi_app).search_movies(title)
        return [item.to_payload() for item in items]

    @fastapi_app.post("/movies/search-by-id")
    async def search_movie_by_id(payload: SearchByIdRequest) -> dict[str, Any]:
        return await get_catalog(fastapi_app).get_movie(payload.id)

    @fastapi_app.get("/movies/popular")
    async def popular_movies() -> list[dict[str, Any]]:
        items = await get_catalog(fastapi_app).popular_movies()
        return [item.to_payload() for item in items]

    @fastapi_app.get("/tvshows/popular")
    async def popular_tv_shows() -> list[dict[str, Any]]:
        items = await get_catalog(fastapi_app).popular_tv()
        return [item.to_payload() for item in items]

    @fastapi_app.get("/movies/collection")
    async def get_collection(
        identity: UserIdentity = Depends(current_user),
    ) -> dict[str, Any]:
        movies = await get_collection_manager(fastapi_app).get(identity.id)
        return {
            "success": True,
            "movies": [movie.model_dump(mode="json") for movie in movies],
        }

    @fastapi_app.post("/movies/collection")
    async def add_to_collection(
        payload: AddMovieRequest,
        identity: UserIdentity = Depends(current_user),
    ) -> dict[str, Any]:
        await get_collection_manager(fastapi_app).add(
            identity.id, payload.to_saved_item()
        )
        return {"success": True, "message": "Movie added to collection"}

    @fastapi_app.put("/movies/collection/status")
    async def update_movie_status(
        payload: UpdateStatusRequest,
        identity: UserIdentity = Depends(current_user),
    ) -> dict[str, Any]:
        await get_collection_manager(fastapi_app).update_status(
            identity.id, payload.movie_id, payload.status
        )
        return {"success": True, "message": "Movie status updated"}

    @fastapi_app.delete("/movies/collection")
    async def delete_from_collection(
        payload: RemoveMovieRequest,
        identity: UserIdentity = Depends(current_user),
    ) -> dict[str, Any]:
        await get_collection_manager(fastapi_app).remove(identity.id, payload.movie_id)
        return {"success": True, "message": "Movie removed from collection"}

    @fastapi_app.get("/movies/recommendations")
    async def recommendations(
        identity: UserIdentity = Depends(current_user),
    ) -> JSONResponse:
        result = await get_recommendation_aggregator(fastapi_app).recommend(identity)
        headers = {DEGRADED_HEADER: "true"} if result.degraded else None
        return JSONResponse(
            [item.to_payload() for item in result.items], headers=headers
        )


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
