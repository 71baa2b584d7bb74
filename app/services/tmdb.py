"""Client for The Movie Database (TMDB) catalog API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import UpstreamError, UpstreamTimeoutError
from ..models import CatalogItem

logger = logging.getLogger(__name__)

POPULARITY_DESC = "popularity.desc"


@dataclass(slots=True, frozen=True)
class DiscoverFilters:
    """Query filters accepted by the ``/discover`` endpoints."""

    genre_id: int | None = None
    sort_by: str = POPULARITY_DESC
    include_adult: bool = False
    include_video: bool = False
    page: int = 1
    min_vote_count: int | None = None
    min_vote_average: float | None = None

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "sort_by": self.sort_by,
            "include_adult": "true" if self.include_adult else "false",
            "include_video": "true" if self.include_video else "false",
            "page": self.page,
        }
        if self.genre_id is not None:
            params["with_genres"] = self.genre_id
        if self.min_vote_count is not None:
            params["vote_count.gte"] = self.min_vote_count
        if self.min_vote_average is not None:
            params["vote_average.gte"] = self.min_vote_average
        return params


class TMDBClient:
    """Thin pass-through to TMDB; every call is a single request, never retried."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    async def search_movies(self, title: str) -> list[CatalogItem]:
        """Return movies whose title matches ``title``."""

        data = await self._get("/search/movie", {"query": title})
        return self._parse_results(data)

    async def get_movie(self, movie_id: int) -> dict[str, Any]:
        """Return the full TMDB record for a single movie."""

        return await self._get(
            f"/movie/{movie_id}", {"language": self._settings.tmdb_language}
        )

    async def discover_movies(self, filters: DiscoverFilters) -> list[CatalogItem]:
        data = await self._get("/discover/movie", filters.to_params())
        return self._parse_results(data)

    async def popular_movies(self) -> list[CatalogItem]:
        data = await self._get("/discover/movie", {"sort_by": POPULARITY_DESC})
        return self._parse_results(data)

    async def popular_tv(self) -> list[CatalogItem]:
        data = await self._get("/discover/tv", {"sort_by": POPULARITY_DESC})
        return self._parse_results(data)

    async def _get(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        query = {**params, "api_key": self._settings.tmdb_api_key}
        try:
            response = await self._client.get(endpoint, params=query)
        except httpx.TimeoutException as exc:
            logger.warning("TMDB request to %s timed out", endpoint)
            raise UpstreamTimeoutError() from exc
        except httpx.RequestError as exc:
            logger.warning("TMDB request to %s failed: %s", endpoint, exc)
            raise UpstreamError(f"Movie catalog request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.warning(
                "TMDB request to %s returned %s: %s",
                endpoint,
                response.status_code,
                response.text,
            )
            raise UpstreamError(
                f"Movie catalog responded with status {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError("Movie catalog returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise UpstreamError("Movie catalog returned an unexpected payload")
        return payload

    @staticmethod
    def _parse_results(data: dict[str, Any]) -> list[CatalogItem]:
        results = data.get("results") or []
        items: list[CatalogItem] = []
        for entry in results:
            if not isinstance(entry, dict) or entry.get("id") is None:
                continue
            try:
                items.append(CatalogItem.model_validate(entry))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed TMDB result %s: %s", entry.get("id"), exc
                )
        return items
