from __future__ import annotations

import logging
import re
import warnings
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Literal, Mapping

from bs4 import BeautifulSoup, FeatureNotFound, NavigableString, Tag, XMLParsedAsHTMLWarning  # type: ignore
from bs4.element import PageElement, PreformattedString  # type: ignore

from .errors import MalformedMarkupError
from .normalize import clean_text

__all__ = [
    "Verse",
    "ExtractionResult",
    "extract_verses",
    "extract_verses_detailed",
    "extract_chapter",
    "serialize_verses",
    "deserialize_verses",
]

logger = logging.getLogger(__name__)

Strategy = Literal["markers", "fallback", "none"]

VERSE_MARKER_TAG = "sup"
VERSE_NUMBER_RE = re.compile(r"^[0-9]{1,3}$")
# Plain-text heuristic: a bare 1-3 digit number surrounded by whitespace
# starts a new verse.
FALLBACK_SPLIT_RE = re.compile(r"\s(?=[0-9]{1,3}\s)")
FALLBACK_VERSE_RE = re.compile(r"^([0-9]{1,3})\s+(.*)$", re.DOTALL)
DEDUP_PREFIX_LENGTH = 40
INVISIBLE_TAGS = {"script", "style", "template", "noscript"}
# Only parsers backed by declared dependencies or the standard library.
PARSER_CHAIN = ("lxml", "html.parser")


@dataclass(frozen=True)
class Verse:
    number: int
    text: str


@dataclass
class ExtractionResult:
    verses: list[Verse] = field(default_factory=list)
    strategy: Strategy = "none"
    marker_count: int = 0


def _soup_from_html(markup: str) -> BeautifulSoup:
    for parser in PARSER_CHAIN:
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(markup, parser)
        except FeatureNotFound:
            continue
    # html.parser ships with Python; if this raises, propagate upstream.
    return BeautifulSoup(markup, "html.parser")


def _is_verse_marker(node: PageElement) -> bool:
    if not isinstance(node, Tag) or (node.name or "").lower() != VERSE_MARKER_TAG:
        return False
    return bool(VERSE_NUMBER_RE.match(clean_text(node.get_text())))


def _is_visible_text(node: PageElement) -> bool:
    if not isinstance(node, NavigableString) or isinstance(node, PreformattedString):
        return False
    parent = node.parent
    while parent is not None:
        if (parent.name or "").lower() in INVISIBLE_TAGS:
            return False
        parent = parent.parent
    return True


def _after_subtree(tag: Tag) -> Iterator[PageElement]:
    """Yield nodes in document order, starting right after ``tag``'s subtree."""
    last: PageElement = tag
    for last in tag.descendants:
        pass
    yield from last.next_elements


def _collect_verse_text(marker: Tag) -> str:
    pieces: list[str] = []
    for node in _after_subtree(marker):
        if _is_verse_marker(node):
            break
        if _is_visible_text(node):
            piece = clean_text(str(node))
            if piece:
                pieces.append(piece)
    return clean_text(" ".join(pieces))


def _extract_from_markers(markers: Iterable[Tag]) -> list[Verse]:
    verses: list[Verse] = []
    for marker in markers:
        number = int(clean_text(marker.get_text()))
        text = _collect_verse_text(marker)
        if number > 0 and text:
            verses.append(Verse(number, text))
    return verses


def _visible_text(soup: BeautifulSoup) -> str:
    root = soup.body or soup
    for tag in root.find_all(INVISIBLE_TAGS):
        tag.decompose()
    return clean_text(root.get_text(" "))


def _extract_from_plain_text(text: str) -> list[Verse]:
    verses: list[Verse] = []
    for part in FALLBACK_SPLIT_RE.split(text):
        match = FALLBACK_VERSE_RE.match(part)
        if not match:
            continue
        number = int(match.group(1))
        body = clean_text(match.group(2))
        if number > 0 and body:
            verses.append(Verse(number, body))
    return verses


def _dedupe_and_sort(verses: Iterable[Verse]) -> list[Verse]:
    seen: set[tuple[int, str]] = set()
    unique: list[Verse] = []
    for verse in verses:
        key = (verse.number, verse.text[:DEDUP_PREFIX_LENGTH])
        if key in seen:
            continue
        seen.add(key)
        unique.append(verse)
    unique.sort(key=lambda verse: verse.number)
    # Distinct texts under one number: the first one in document order wins.
    ordered: list[Verse] = []
    for verse in unique:
        if ordered and ordered[-1].number == verse.number:
            continue
        ordered.append(verse)
    return ordered


def extract_verses_detailed(markup: str) -> ExtractionResult:
    """
    Recover ``(number, text)`` verses from one chapter of loosely structured markup.

    Superscript verse numbers are the primary signal: the text between one
    marker and the next belongs to the first marker. Only when the markup has
    no such marker at all does the extractor fall back to splitting the
    visible text on bare numbers, which can misfire on numerals in the prose.
    """
    soup = _soup_from_html(markup)
    markers = [tag for tag in soup.find_all(VERSE_MARKER_TAG) if _is_verse_marker(tag)]
    if markers:
        verses = _extract_from_markers(markers)
        strategy: Strategy = "markers"
        logger.debug("Found %d verse markers", len(markers))
    else:
        verses = _extract_from_plain_text(_visible_text(soup))
        strategy = "fallback" if verses else "none"
        logger.warning("No verse markers found; plain-text fallback yielded %d verses", len(verses))
    return ExtractionResult(
        verses=_dedupe_and_sort(verses),
        strategy=strategy,
        marker_count=len(markers),
    )


def extract_verses(markup: str) -> list[Verse]:
    return extract_verses_detailed(markup).verses


def extract_chapter(chapter: int, markup: str) -> list[Verse]:
    verses = extract_verses(markup)
    if not verses:
        raise MalformedMarkupError(chapter)
    return verses


def serialize_verses(verses: Iterable[Verse]) -> list[dict[str, object]]:
    return [{"v": verse.number, "t": verse.text} for verse in verses]


def deserialize_verses(data: Iterable[Mapping[str, object]]) -> list[Verse]:
    verses: list[Verse] = []
    for entry in data:
        if not isinstance(entry, Mapping):
            continue
        number = entry.get("v")
        text = entry.get("t")
        if not isinstance(number, int) or isinstance(number, bool) or number < 1:
            continue
        if not isinstance(text, str) or not text:
            continue
        verses.append(Verse(number, text))
    return _dedupe_and_sort(verses)
