"""
Test doubles shared by the CI tests: in-memory catalogs and a controllable clock.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from backends.game_ids import CanonicalGameId, Source
from backends.providers.base import GameCategory, GameProvider, GameRecord, SearchResult


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_record(
    source: str,
    native_id: int,
    name: str,
    year: Optional[int] = None,
    platforms: Optional[List[str]] = None,
    rating: Optional[float] = None,
    genres: Optional[List[str]] = None,
    developer: Optional[str] = None,
) -> GameRecord:
    timestamp = None
    if year is not None:
        timestamp = int(datetime(year, 6, 1, tzinfo=timezone.utc).timestamp())
    return GameRecord(
        id=str(CanonicalGameId.of(source, native_id)),
        name=name,
        source=source,
        source_id=str(native_id),
        platforms=platforms or [],
        genres=genres or [],
        rating=rating,
        release_timestamp=timestamp,
        developer=developer,
    )


class FakeProvider(GameProvider):
    """
    In-memory catalog.

    - search() returns the records whose name contains the query, or
      `search_results` when set
    - get_category() returns `category_results[category]`, or every record
      by rating
    - get_games() omits the ids listed in `batch_omits`
    - `search_error` / `get_error` / `batch_error` / `category_error` make the
      matching call raise
    """

    def __init__(self, source: Source, records: Iterable[GameRecord] = ()):
        super().__init__(http_client=None)
        self.source = source
        self.records = {int(record.source_id): record for record in records}
        self.search_results: Optional[List[GameRecord]] = None
        self.batch_omits: set = set()
        self.search_error: Optional[Exception] = None
        self.get_error: Optional[Exception] = None
        self.batch_error: Optional[Exception] = None
        self.category_results: Dict[GameCategory, List[GameRecord]] = {}
        self.category_error: Optional[Exception] = None
        self.search_calls: list = []
        self.get_calls: list = []
        self.batch_calls: list = []
        self.category_calls: list = []

    def add(self, record: GameRecord):
        self.records[int(record.source_id)] = record

    async def search(self, query: str, page: int = 1, page_size: int = 20) -> SearchResult:
        self.search_calls.append((query, page, page_size))
        if self.search_error is not None:
            raise self.search_error

        if self.search_results is not None:
            matches = list(self.search_results)
        else:
            matches = [r for r in self.records.values() if query.lower() in r.name.lower()]

        return self._page(matches, page, page_size)

    async def get_category(self, category: GameCategory, page: int = 1, page_size: int = 20) -> SearchResult:
        self.category_calls.append((GameCategory(category), page, page_size))
        if self.category_error is not None:
            raise self.category_error

        matches = self.category_results.get(GameCategory(category))
        if matches is None:
            matches = sorted(self.records.values(), key=lambda r: r.rating or 0.0, reverse=True)
        return self._page(list(matches), page, page_size)

    def _page(self, matches: List[GameRecord], page: int, page_size: int) -> SearchResult:
        start = (page - 1) * page_size
        return SearchResult(
            games=matches[start:start + page_size],
            total=len(matches),
            page=page,
            page_size=page_size,
            has_next_page=start + page_size < len(matches),
            has_previous_page=page > 1,
            sources=[self.name],
        )

    async def get_game(self, native_id: int) -> Optional[GameRecord]:
        self.get_calls.append(int(native_id))
        if self.get_error is not None:
            raise self.get_error
        return self.records.get(int(native_id))

    async def get_games(self, native_ids) -> List[GameRecord]:
        ids = [int(native_id) for native_id in native_ids]
        self.batch_calls.append(ids)
        if self.batch_error is not None:
            raise self.batch_error
        return [self.records[n] for n in ids if n in self.records and n not in self.batch_omits]
