"""Lazy pagination over multi-page REST listings.

A :class:`ResourceStream` turns successive listing pages into one iterator
of records. Pages are fetched only when the buffered records run out, so at
most one page is held in memory. Services announce the next page either
with a ``<collection>_links`` / ``next`` link in the body or implicitly,
by returning a full page whose last record id becomes the next marker.
"""

import enum
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Generic, NamedTuple, TypeAlias, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ProtocolMismatch

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class StreamState(enum.Enum):
    """States of a :class:`ResourceStream`."""

    HAS_BUFFERED_RECORDS = "has_buffered_records"
    NEED_NEXT_PAGE = "need_next_page"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


class Marker(NamedTuple):
    """Next page is requested with ``?marker=<value>`` and the original filters."""

    value: str


class NextLink(NamedTuple):
    """Next page is requested from this (absolute or endpoint-relative) URL."""

    url: str


NextPage: TypeAlias = Marker | NextLink


class PageQuery(BaseModel):
    """Query used to fetch one page."""

    model_config = ConfigDict(frozen=True)

    path: str
    params: dict[str, Any] = Field(default_factory=dict)
    marker_param: str = "marker"

    def follow(self, next_page: NextPage) -> "PageQuery":
        """Return the query for the page described by ``next_page``."""
        if isinstance(next_page, NextLink):
            # Links already carry every query parameter.
            return PageQuery(path=next_page.url, marker_param=self.marker_param)
        params = {**self.params, self.marker_param: next_page.value}
        return PageQuery(path=self.path, params=params, marker_param=self.marker_param)


@dataclass
class Page(Generic[T]):
    """One decoded listing page."""

    records: list[T] = field(default_factory=list)
    next: NextPage | None = None


PageFetcher: TypeAlias = Callable[[PageQuery], Any]
PageDecoder: TypeAlias = Callable[[Any], Page[T]]


class ResourceStream(Generic[T]):
    """Lazy, finite, non-restartable iterator over paginated records.

    Records come out in page order, then in order within each page. A page
    is fetched only when a pull finds the buffer empty and a next page is
    known. A failed fetch is raised from the pull that triggered it and
    leaves the stream in the FAILED state: every later pull raises the same
    exception again without touching the network, and :attr:`error` keeps it.
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        decode_page: PageDecoder[T],
        query: PageQuery,
    ):
        """Initialize the stream. Nothing is fetched until the first pull.

        Args:
            fetch_page: Function returning the raw decoded JSON for a query.
            decode_page: Function turning a raw page into a :class:`Page`.
            query: Query for the first page.
        """
        self._fetch_page = fetch_page
        self._decode_page = decode_page
        self._next_query: PageQuery | None = query
        self._last_next: NextPage | None = None
        self._buffer: deque[T] = deque()
        self._state = StreamState.NEED_NEXT_PAGE
        self._error: BaseException | None = None
        self._pages_fetched = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def error(self) -> BaseException | None:
        """The exception that failed the stream, if any."""
        return self._error

    @property
    def pages_fetched(self) -> int:
        return self._pages_fetched

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        while True:
            if self._state is StreamState.HAS_BUFFERED_RECORDS:
                record = self._buffer.popleft()
                if not self._buffer:
                    self._state = self._state_after_page()
                return record
            if self._state is StreamState.FAILED:
                raise self._error
            if self._state is StreamState.EXHAUSTED:
                raise StopIteration
            self._load_next_page()

    def _state_after_page(self) -> StreamState:
        if self._buffer:
            return StreamState.HAS_BUFFERED_RECORDS
        if self._next_query is not None:
            return StreamState.NEED_NEXT_PAGE
        return StreamState.EXHAUSTED

    def _load_next_page(self) -> None:
        query = self._next_query
        if query is None:
            self._state = StreamState.EXHAUSTED
            return

        try:
            page = self._decode_page(self._fetch_page(query))
            if page.next is not None and page.next == self._last_next:
                msg = f"Listing {query.path} returned the same next page twice: {page.next}"
                raise ProtocolMismatch(msg)
        except Exception as exc:
            self._state = StreamState.FAILED
            self._error = exc
            self._next_query = None
            logger.warning(
                "Page fetch failed",
                path=query.path,
                pages_fetched=self._pages_fetched,
                error=repr(exc),
            )
            raise

        self._pages_fetched += 1
        self._last_next = page.next
        self._next_query = query.follow(page.next) if page.next is not None else None
        self._buffer.extend(page.records)
        self._state = self._state_after_page()
        logger.debug(
            "Fetched page",
            path=query.path,
            records=len(page.records),
            has_next=page.next is not None,
        )


def _decode_records(
    raw: Any,
    collection_key: str,
    model: type[BaseModel] | None,
) -> tuple[list[Any], list[Any]]:
    if not isinstance(raw, dict) or not isinstance(raw.get(collection_key), list):
        msg = f"Listing page has no {collection_key!r} list"
        raise ProtocolMismatch(msg)
    items = raw[collection_key]
    if model is None:
        return items, items
    try:
        return items, [model.model_validate(item) for item in items]
    except ValidationError as exc:
        msg = f"Invalid record in {collection_key!r} listing: {exc}"
        raise ProtocolMismatch(msg) from exc


def _find_next_link(raw: dict[str, Any], collection_key: str) -> NextLink | None:
    for link in raw.get(f"{collection_key}_links") or ():
        if isinstance(link, dict) and link.get("rel") == "next" and link.get("href"):
            return NextLink(link["href"])
    if isinstance(raw.get("next"), str) and raw["next"]:
        return NextLink(raw["next"])
    return None


def links_decoder(
    collection_key: str,
    model: type[BaseModel] | None = None,
) -> PageDecoder[Any]:
    """Decoder for listings that embed a next-page link.

    Handles ``<collection>_links`` entries with ``rel == "next"`` (compute,
    network) and a top-level ``next`` link (image).

    Args:
        collection_key: Key of the record list, e.g. "servers".
        model: Optional pydantic model to validate each record with.
    """

    def decode(raw: Any) -> Page[Any]:
        _, records = _decode_records(raw, collection_key, model)
        return Page(records=records, next=_find_next_link(raw, collection_key))

    return decode


def marker_decoder(
    collection_key: str,
    model: type[BaseModel] | None = None,
    limit: int | None = None,
    marker_field: str = "id",
) -> PageDecoder[Any]:
    """Decoder for listings paginated by ``limit``/``marker`` only.

    A page holding ``limit`` records is assumed to have a successor whose
    marker is the last record's ``marker_field``. Embedded next links, when
    present, take precedence.

    Args:
        collection_key: Key of the record list, e.g. "flavors".
        model: Optional pydantic model to validate each record with.
        limit: Page size the listing was requested with.
        marker_field: Record field used as the marker.
    """

    def decode(raw: Any) -> Page[Any]:
        items, records = _decode_records(raw, collection_key, model)
        next_page: NextPage | None = _find_next_link(raw, collection_key)
        if next_page is None and limit and items and len(items) >= limit:
            last = items[-1]
            if not isinstance(last, dict) or marker_field not in last:
                msg = f"Record in {collection_key!r} listing has no {marker_field!r}"
                raise ProtocolMismatch(msg)
            next_page = Marker(str(last[marker_field]))
        return Page(records=records, next=next_page)

    return decode
