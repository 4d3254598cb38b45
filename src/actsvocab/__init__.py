from .corpus import ChapterCache, ChapterClient, load_chapters, parse_chapter, search_verses
from .errors import (
    EmptyCorpusWarning,
    InvalidChapterError,
    MalformedMarkupError,
    UpstreamFetchError,
)
from .mission import FoundLedger, MissionSet, build_mission_set, is_match, matches_search
from .normalize import canonicalize, comparison_key
from .tokens import Token, tokenize
from .verses import Verse, extract_verses

__all__ = [
    "canonicalize",
    "comparison_key",
    "Token",
    "tokenize",
    "Verse",
    "extract_verses",
    "MissionSet",
    "FoundLedger",
    "build_mission_set",
    "is_match",
    "matches_search",
    "ChapterCache",
    "ChapterClient",
    "load_chapters",
    "parse_chapter",
    "search_verses",
    "InvalidChapterError",
    "UpstreamFetchError",
    "MalformedMarkupError",
    "EmptyCorpusWarning",
]
