"""Genre-driven movie recommendations built on TMDB discovery."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from itertools import chain
from typing import Iterable, Literal, Sequence

from ..config import Settings
from ..errors import EmptyResultError, UpstreamTimeoutError
from ..models import CatalogItem, Genre, UserIdentity
from .collection_store import CollectionStore
from .tmdb import DiscoverFilters, TMDBClient

logger = logging.getLogger(__name__)

MAX_RECOMMENDED = 20
# The run stops once the working source list grows to this size, even when
# fewer than MAX_RECOMMENDED items were found.
MAX_GENRE_SOURCES = 20
DEFAULT_PER_GENRE = 10
FALLBACK_PER_GENRE = 5
MIN_VOTE_COUNT = 1000
MIN_VOTE_AVERAGE = 6

NO_RECOMMENDATIONS = "No recommended movies found"

SourceKind = Literal["genre-filtered", "popularity-fallback"]
GENRE_FILTERED: SourceKind = "genre-filtered"
POPULARITY_FALLBACK: SourceKind = "popularity-fallback"


@dataclass(slots=True, frozen=True)
class GenreSource:
    """One discovery query issued on every pass of the aggregation loop.

    The popularity fallback only drops the genre filter. It still asks for
    at least ``MIN_VOTE_COUNT`` votes and a ``MIN_VOTE_AVERAGE`` rating.
    """

    kind: SourceKind
    genre_id: int | None = None

    @classmethod
    def for_genre(cls, genre_id: int) -> "GenreSource":
        return cls(kind=GENRE_FILTERED, genre_id=genre_id)

    @classmethod
    def fallback(cls) -> "GenreSource":
        return cls(kind=POPULARITY_FALLBACK)

    def filters(self) -> DiscoverFilters:
        return DiscoverFilters(
            genre_id=self.genre_id if self.kind == GENRE_FILTERED else None,
            include_adult=False,
            include_video=False,
            page=1,
            min_vote_count=MIN_VOTE_COUNT,
            min_vote_average=MIN_VOTE_AVERAGE,
        )


@dataclass(slots=True)
class RecommendationResult:
    items: list[CatalogItem] = field(default_factory=list)
    degraded: bool = False
    iterations: int = 0
    source_count: int = 0


class RecommendationAggregator:
    """Collect popular, well-rated movies from the user's preferred genres.

    Each pass queries every source concurrently and keeps the top results per
    source, dropping movies the user already saved and movies already picked.
    A pass that contributes nothing new appends a popularity fallback source
    and lowers the per-source count for the next pass.
    """

    def __init__(
        self,
        settings: Settings,
        catalog: TMDBClient,
        store: CollectionStore,
    ):
        self._catalog = catalog
        self._store = store
        self._timeout = settings.recommendation_timeout_seconds
        self._tolerate_failures = settings.recommendation_tolerate_failures

    @staticmethod
    def sources_for(genres: Iterable[Genre | None]) -> list[GenreSource]:
        """Turn the stored preferences into discovery sources, skipping blanks."""

        return [GenreSource.for_genre(genre.id) for genre in genres if genre and genre.id]

    async def recommend(self, user: UserIdentity) -> RecommendationResult:
        sources = self.sources_for(user.genres)
        if not sources:
            raise EmptyResultError(NO_RECOMMENDATIONS)

        try:
            result = await asyncio.wait_for(
                self._aggregate(user.id, sources), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeoutError("Recommendation lookup timed out") from exc

        logger.info(
            "Recommendations for user %s: %s items after %s passes over %s sources%s",
            user.id,
            len(result.items),
            result.iterations,
            result.source_count,
            " (degraded)" if result.degraded else "",
        )
        if not result.items:
            raise EmptyResultError(NO_RECOMMENDATIONS)
        return result

    async def _aggregate(
        self, user_id: int, initial_sources: Sequence[GenreSource]
    ) -> RecommendationResult:
        sources = list(initial_sources)
        per_source = DEFAULT_PER_GENRE
        result = RecommendationResult()
        picked_ids: set[int] = set()

        while len(result.items) < MAX_RECOMMENDED and len(sources) < MAX_GENRE_SOURCES:
            result.iterations += 1
            batches, failed = await self._fetch(sources, per_source)
            result.degraded = result.degraded or failed

            saved_ids = await self._store.saved_ids(user_id)
            fresh: list[CatalogItem] = []
            for candidate in chain.from_iterable(batches):
                if candidate.id in saved_ids or candidate.id in picked_ids:
                    continue
                picked_ids.add(candidate.id)
                fresh.append(candidate)

            result.items = [*result.items, *fresh][:MAX_RECOMMENDED]

            if fresh:
                per_source = DEFAULT_PER_GENRE
            else:
                sources.append(GenreSource.fallback())
                per_source = FALLBACK_PER_GENRE

        result.source_count = len(sources)
        return result

    async def _fetch(
        self, sources: Sequence[GenreSource], limit: int
    ) -> tuple[list[list[CatalogItem]], bool]:
        """Run one discovery call per source; returns the batches and a degraded flag."""

        calls = [self._catalog.discover_movies(source.filters()) for source in sources]
        if not self._tolerate_failures:
            results = await asyncio.gather(*calls)
            return [items[:limit] for items in results], False

        outcomes = await asyncio.gather(*calls, return_exceptions=True)
        batches: list[list[CatalogItem]] = []
        errors: list[Exception] = []
        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning("Discovery for %s failed: %s", source, outcome)
                errors.append(outcome)
                continue
            batches.append(outcome[:limit])
        if errors and not batches:
            raise errors[0]
        return batches, bool(errors)
