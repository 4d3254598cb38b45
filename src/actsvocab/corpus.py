from __future__ import annotations

import json
import logging
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping

import requests

from .errors import (
    EmptyCorpusWarning,
    InvalidChapterError,
    MalformedMarkupError,
    UpstreamFetchError,
)
from .mission import matches_search
from .normalize import canonicalize, comparison_key
from .verses import Verse, deserialize_verses, extract_chapter, serialize_verses

__all__ = [
    "FIRST_CHAPTER",
    "LAST_CHAPTER",
    "DEFAULT_UPSTREAM_BASE",
    "DEFAULT_USER_AGENT",
    "ChapterCache",
    "ChapterClient",
    "LoadReport",
    "LocalText",
    "SearchHit",
    "load_chapters",
    "load_local_text",
    "parse_chapter",
    "search_verses",
]

logger = logging.getLogger(__name__)

FIRST_CHAPTER = 1
LAST_CHAPTER = 28
ALL_CHAPTERS = tuple(range(FIRST_CHAPTER, LAST_CHAPTER + 1))

DEFAULT_UPSTREAM_BASE = "https://www.die-bibel.de/en/bible/NA28/ACT."
DEFAULT_USER_AGENT = "Mozilla/5.0"
DEFAULT_SEARCH_LIMIT = 200
CACHE_STATE_VERSION = 1


def parse_chapter(value: object) -> int:
    """Validate a chapter given as an int or a string of ASCII digits."""
    if isinstance(value, bool):
        raise InvalidChapterError(value)
    if isinstance(value, int):
        chapter = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or not (stripped.isascii() and stripped.isdigit()):
            raise InvalidChapterError(value, f"Missing or invalid chapter: {value!r}")
        chapter = int(stripped)
    else:
        raise InvalidChapterError(value)
    if not FIRST_CHAPTER <= chapter <= LAST_CHAPTER:
        raise InvalidChapterError(
            value, f"Chapter must be {FIRST_CHAPTER}..{LAST_CHAPTER}, got {chapter}"
        )
    return chapter


class ChapterClient:
    """
    Minimal HTTP client for the per-chapter NA28 pages.

    Each chapter lives at ``<base><chapter>``; the response body is returned
    untouched so the verse extractor can work on the raw markup.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_UPSTREAM_BASE,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url
        self.user_agent = user_agent
        self.timeout = timeout
        self._session = requests.Session()

    def chapter_url(self, chapter: int) -> str:
        return f"{self.base_url}{chapter}"

    def fetch_markup(self, chapter: object) -> str:
        number = parse_chapter(chapter)
        url = self.chapter_url(number)
        try:
            resp = self._session.get(
                url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamFetchError(number, None, f"Chapter {number}: failed to contact {url}") from exc
        if resp.status_code != 200:
            raise UpstreamFetchError(number, resp.status_code)
        if not resp.encoding or resp.encoding.lower() == "iso-8859-1":
            resp.encoding = "utf-8"
        logger.debug("Fetched chapter %d (%d bytes)", number, len(resp.content))
        return resp.text

    def close(self) -> None:
        self._session.close()


@dataclass
class ChapterCache:
    """
    Chapter number -> extracted verses, owned by one session.

    ``load`` consults the store before touching the network unless ``force``
    is set. When ``path`` is given the store can be written to and read from a
    JSON file between runs.
    """

    client: ChapterClient | None = None
    path: Path | None = None
    chapters: dict[int, list[Verse]] = field(default_factory=dict)

    def get(self, chapter: int) -> list[Verse] | None:
        verses = self.chapters.get(chapter)
        return list(verses) if verses is not None else None

    def put(self, chapter: int, verses: Iterable[Verse]) -> None:
        self.chapters[parse_chapter(chapter)] = list(verses)

    def invalidate(self, chapter: int | None = None) -> None:
        if chapter is None:
            self.chapters.clear()
        else:
            self.chapters.pop(chapter, None)

    def corpus(self) -> dict[int, list[Verse]]:
        return {chapter: list(self.chapters[chapter]) for chapter in sorted(self.chapters)}

    def load(self, chapter: object, *, force: bool = False) -> list[Verse]:
        number = parse_chapter(chapter)
        if not force:
            cached = self.get(number)
            if cached is not None:
                logger.debug("Chapter %d served from cache", number)
                return cached
        verses = self.fetch(number)
        self.chapters[number] = verses
        return list(verses)

    def fetch(self, chapter: object) -> list[Verse]:
        """Download and extract one chapter without touching the store."""
        number = parse_chapter(chapter)
        if self.client is None:
            self.client = ChapterClient()
        markup = self.client.fetch_markup(number)
        return extract_chapter(number, markup)

    def save(self) -> None:
        if self.path is None:
            return
        payload = {
            "version": CACHE_STATE_VERSION,
            "chapters": {str(ch): serialize_verses(vs) for ch, vs in self.corpus().items()},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def load_file(self) -> int:
        """Replace the store with the file contents; return the chapter count."""
        self.chapters.clear()
        if self.path is None or not self.path.exists():
            return 0
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable chapter cache %s: %s", self.path, exc)
            return 0
        if not isinstance(raw, dict) or raw.get("version") != CACHE_STATE_VERSION:
            return 0
        chapters = raw.get("chapters")
        if not isinstance(chapters, dict):
            return 0
        for key, entries in chapters.items():
            try:
                number = parse_chapter(key)
            except InvalidChapterError:
                continue
            if not isinstance(entries, list):
                continue
            verses = deserialize_verses(entries)
            if verses:
                self.chapters[number] = verses
        return len(self.chapters)


@dataclass
class LoadReport:
    loaded: dict[int, list[Verse]] = field(default_factory=dict)
    errors: dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def load_chapters(
    cache: ChapterCache,
    chapters: Iterable[object] | None = None,
    *,
    force: bool = False,
    progress_callback=None,
) -> LoadReport:
    """
    Load chapters one by one; a failing chapter is reported, not fatal.

    ``progress_callback`` receives ``(chapter, error_or_none)`` after each
    chapter.
    """
    report = LoadReport()
    for value in chapters if chapters is not None else ALL_CHAPTERS:
        try:
            number = parse_chapter(value)
        except InvalidChapterError as exc:
            logger.warning("%s", exc)
            continue
        error: str | None = None
        try:
            report.loaded[number] = cache.load(number, force=force)
        except (UpstreamFetchError, MalformedMarkupError) as exc:
            error = str(exc)
            report.errors[number] = error
            logger.warning("%s", error)
        if progress_callback is not None:
            progress_callback(number, error)
    return report


@dataclass(frozen=True)
class LocalText:
    text: str
    empty: bool = False


def load_local_text(path: Path) -> LocalText:
    text = canonicalize(path.read_text(encoding="utf-8"))
    if not text.strip():
        warnings.warn(f"Local text asset is empty: {path}", EmptyCorpusWarning, stacklevel=2)
        return LocalText(text="", empty=True)
    return LocalText(text=text)


@dataclass(frozen=True)
class SearchHit:
    chapter: int
    verse: int
    text: str


def search_verses(
    corpus: Mapping[int, Iterable[Verse]],
    query: str,
    ignore_accents: bool,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> list[SearchHit]:
    query_key = comparison_key(query, ignore_accents)
    if not query_key or limit <= 0:
        return []
    hits: list[SearchHit] = []
    for chapter in sorted(corpus):
        for verse in corpus[chapter]:
            if matches_search(verse.text, query_key, ignore_accents):
                hits.append(SearchHit(chapter=chapter, verse=verse.number, text=verse.text))
                if len(hits) >= limit:
                    return hits
    return hits
