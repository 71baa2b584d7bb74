"""End-to-end tests for the HTTP routes."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.database import Database
from app.main import DEGRADED_HEADER, register_routes
from app.services.auth import AuthService
from app.services.collection_store import CollectionStore
from app.services.collections import CollectionManager
from app.services.recommendations import RecommendationAggregator
from app.services.tmdb import TMDBClient

from conftest import build_settings


def _results(*ids: int, key: str = "title") -> dict[str, Any]:
    return {
        "page": 1,
        "results": [
            {"id": item_id, key: f"Title {item_id}", "poster_path": f"/{item_id}.jpg"}
            for item_id in ids
        ],
    }


def tmdb_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    params = request.url.params
    if path.endswith("/search/movie"):
        if params.get("query") == "broken":
            return httpx.Response(500, json={"status_message": "boom"})
        if params.get("query") == "malformed":
            payload = _results(603, 604)
            payload["results"][0]["genre_ids"] = None
            return httpx.Response(200, json=payload)
        return httpx.Response(200, json=_results(603, 604))
    if path.endswith("/movie/603"):
        return httpx.Response(200, json={"id": 603, "title": "The Matrix", "runtime": 136})
    if path.endswith("/discover/tv"):
        return httpx.Response(200, json=_results(1399, key="name"))
    if path.endswith("/discover/movie"):
        if params.get("with_genres") == "28":
            return httpx.Response(200, json=_results(*range(1, 11)))
        if "vote_count.gte" in params:
            return httpx.Response(200, json=_results())
        return httpx.Response(200, json=_results(550, 551, 552))
    return httpx.Response(404, json={"status_message": "not found"})


@pytest.fixture
def client(tmp_path) -> Iterator[TestClient]:
    settings = build_settings()
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(tmdb_handler),
        base_url=str(settings.tmdb_api_url),
    )
    catalog = TMDBClient(settings, http_client)
    store = CollectionStore(database.session_factory)

    fastapi_app = FastAPI()
    register_routes(fastapi_app)
    fastapi_app.state.catalog = catalog
    fastapi_app.state.collections = CollectionManager(store)
    fastapi_app.state.recommendations = RecommendationAggregator(settings, catalog, store)
    fastapi_app.state.auth = AuthService(settings, database.session_factory)

    with TestClient(fastapi_app) as test_client:
        yield test_client

    asyncio.run(database.dispose())


def _register(client: TestClient, genres: list[dict[str, Any]] | None = None) -> dict[str, str]:
    response = client.post(
        "/users/register",
        json={
            "firstName": "Grace",
            "lastName": "Hopper",
            "username": "grace",
            "email": "grace@example.com",
            "password": "cobol-rules",
            "genres": genres if genres is not None else [{"id": 28, "name": "Action"}],
        },
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    return {"Authorization": f"Bearer {body['token']}"}


def _add(client: TestClient, headers: dict[str, str], movie_id: int, title: str) -> httpx.Response:
    return client.post(
        "/movies/collection",
        headers=headers,
        json={"id": movie_id, "posterPath": f"/{movie_id}.jpg", "title": title, "genres": [28]},
    )


def test_collection_lifecycle(client: TestClient) -> None:
    headers = _register(client)

    missing = client.get("/movies/collection", headers=headers)
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Movie collection not found"}

    added = _add(client, headers, 550, "Fight Club")
    assert added.status_code == 200
    assert added.json() == {"success": True, "message": "Movie added to collection"}

    duplicate = _add(client, headers, 551, "Fight Club")
    assert duplicate.status_code == 409
    assert duplicate.json()["success"] is False

    updated = client.put(
        "/movies/collection/status",
        headers=headers,
        json={"movieId": 550, "status": "watched"},
    )
    assert updated.status_code == 200

    listing = client.get("/movies/collection", headers=headers)
    assert listing.status_code == 200
    assert listing.json() == {
        "success": True,
        "movies": [
            {
                "id": 550,
                "title": "Fight Club",
                "poster_path": "/550.jpg",
                "genres": [28],
                "status": "watched",
            }
        ],
    }

    unknown = client.put(
        "/movies/collection/status",
        headers=headers,
        json={"movieId": 1, "status": "watched"},
    )
    assert unknown.status_code == 404
    assert unknown.json()["message"] == "Movie not found in user's collection"

    removed = client.request(
        "DELETE", "/movies/collection", headers=headers, json={"movieId": 550}
    )
    assert removed.status_code == 200
    assert removed.json()["message"] == "Movie removed from collection"

    removed_again = client.request(
        "DELETE", "/movies/collection", headers=headers, json={"movieId": 550}
    )
    assert removed_again.status_code == 404


def test_collection_requires_token(client: TestClient) -> None:
    response = client.get("/movies/collection")
    assert response.status_code == 401
    assert response.json()["success"] is False

    forged = client.get(
        "/movies/collection", headers={"Authorization": "Bearer not-a-token"}
    )
    assert forged.status_code == 401


def test_invalid_status_is_rejected_at_the_boundary(client: TestClient) -> None:
    headers = _register(client)
    _add(client, headers, 550, "Fight Club")

    response = client.put(
        "/movies/collection/status",
        headers=headers,
        json={"movieId": 550, "status": "binged"},
    )

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["errors"]


def test_login_and_profile(client: TestClient) -> None:
    _register(client)

    login = client.post(
        "/users/login", json={"email": "GRACE@example.com", "password": "cobol-rules"}
    )
    assert login.status_code == 200
    token = login.json()["token"]

    profile = client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert profile.status_code == 200
    user = profile.json()["user"]
    assert user["username"] == "grace"
    assert user["firstName"] == "Grace"
    assert user["role"] == "User"
    assert user["preferences"] == "none"

    bad_login = client.post(
        "/users/login", json={"email": "grace@example.com", "password": "fortran"}
    )
    assert bad_login.status_code == 401


def test_catalog_passthrough_endpoints(client: TestClient) -> None:
    search = client.get("/movies/search", params={"title": "Matrix"})
    assert search.status_code == 200
    assert [movie["id"] for movie in search.json()] == [603, 604]

    by_id = client.post("/movies/search-by-id", json={"id": 603})
    assert by_id.status_code == 200
    assert by_id.json()["runtime"] == 136

    popular = client.get("/movies/popular")
    assert [movie["id"] for movie in popular.json()] == [550, 551, 552]

    shows = client.get("/tvshows/popular")
    assert shows.json()[0]["name"] == "Title 1399"


def test_upstream_failure_maps_to_bad_gateway(client: TestClient) -> None:
    response = client.get("/movies/search", params={"title": "broken"})

    assert response.status_code == 502
    assert response.json() == {
        "success": False,
        "message": "Movie catalog responded with status 500",
    }


def test_malformed_catalog_row_is_dropped(client: TestClient) -> None:
    response = client.get("/movies/search", params={"title": "malformed"})

    assert response.status_code == 200
    assert [movie["id"] for movie in response.json()] == [604]


def test_unexpected_error_returns_json_body() -> None:
    fastapi_app = FastAPI()
    register_routes(fastapi_app)

    @fastapi_app.get("/explode")
    async def explode() -> None:
        raise RuntimeError("database went away")

    with TestClient(fastapi_app, raise_server_exceptions=False) as test_client:
        response = test_client.get("/explode")

    assert response.status_code == 500
    assert response.headers["content-type"] == "application/json"
    assert response.json() == {"success": False, "message": "Internal server error"}


def test_recommendations_skip_saved_movies(client: TestClient) -> None:
    headers = _register(client)
    _add(client, headers, 1, "Title 1")

    response = client.get("/movies/recommendations", headers=headers)

    assert response.status_code == 200
    assert [movie["id"] for movie in response.json()] == list(range(2, 11))
    assert DEGRADED_HEADER not in response.headers


def test_recommendations_without_genres_is_bad_request(client: TestClient) -> None:
    headers = _register(client, genres=[])

    response = client.get("/movies/recommendations", headers=headers)

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "No recommended movies found"}


def test_updating_genres_changes_recommendations(client: TestClient) -> None:
    headers = _register(client, genres=[])

    updated = client.put(
        "/users/me/genres", headers=headers, json={"genres": [{"id": 28, "name": "Action"}, None]}
    )
    assert updated.status_code == 200
    assert updated.json()["user"]["genres"] == [{"id": 28, "name": "Action"}]

    response = client.get("/movies/recommendations", headers=headers)
    assert response.status_code == 200
    assert len(response.json()) == 10
