from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import Literal

from .corpus import FIRST_CHAPTER, LAST_CHAPTER
from .mission import (
    DEFAULT_MISSION,
    FoundLedger,
    MissionProgress,
    MissionSet,
    build_mission_set,
    is_match,
)
from .normalize import comparison_key

__all__ = [
    "SESSION_FILENAME",
    "SESSION_STATE_VERSION",
    "ClickResult",
    "Session",
    "SessionState",
    "load_session",
    "rollover",
    "save_session",
    "today_key",
]

logger = logging.getLogger(__name__)

SESSION_FILENAME = ".acts-vocab-session.json"
SESSION_STATE_VERSION = 3
CORPUS_MODES = ("na28", "txt")

CorpusMode = Literal["na28", "txt"]


def today_key(today: date | None = None) -> str:
    return (today or date.today()).isoformat()


@dataclass(frozen=True)
class SessionState:
    version: int = SESSION_STATE_VERSION
    mission_text: str = "\n".join(DEFAULT_MISSION)
    ignore_accents: bool = True
    only_mission: bool = False
    mode: CorpusMode = "na28"
    chapter: int = FIRST_CHAPTER
    found_counts: dict[str, int] = field(default_factory=dict)
    last_seen_day: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "version": self.version,
            "mission_text": self.mission_text,
            "ignore_accents": self.ignore_accents,
            "only_mission": self.only_mission,
            "mode": self.mode,
            "chapter": self.chapter,
            "found_counts": dict(self.found_counts),
            "last_seen_day": self.last_seen_day,
        }

    @classmethod
    def from_dict(cls, raw: object) -> "SessionState":
        """Build a state from untrusted JSON, keeping defaults for bad fields."""
        default = cls()
        if not isinstance(raw, dict):
            return default
        mission_text = raw.get("mission_text")
        if not isinstance(mission_text, str):
            mission_text = default.mission_text
        ignore_accents = raw.get("ignore_accents")
        if not isinstance(ignore_accents, bool):
            ignore_accents = default.ignore_accents
        only_mission = raw.get("only_mission")
        if not isinstance(only_mission, bool):
            only_mission = default.only_mission
        mode = raw.get("mode")
        if mode not in CORPUS_MODES:
            mode = default.mode
        chapter = raw.get("chapter")
        if (
            isinstance(chapter, bool)
            or not isinstance(chapter, int)
            or not FIRST_CHAPTER <= chapter <= LAST_CHAPTER
        ):
            chapter = default.chapter
        last_seen_day = raw.get("last_seen_day")
        if not isinstance(last_seen_day, str):
            last_seen_day = None
        found_counts = FoundLedger.from_mapping(raw.get("found_counts")).to_dict()
        return cls(
            mission_text=mission_text,
            ignore_accents=ignore_accents,
            only_mission=only_mission,
            mode=mode,
            chapter=chapter,
            found_counts=found_counts,
            last_seen_day=last_seen_day,
        )


def rollover(state: SessionState, today: str) -> SessionState:
    """Start a new day: clear the found counts, keep the mission and settings."""
    if state.last_seen_day == today:
        return state
    return replace(state, found_counts={}, last_seen_day=today)


def load_session(path: Path, today: str | None = None) -> SessionState:
    day = today or today_key()
    if not path.exists():
        return rollover(SessionState(), day)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable session file %s: %s", path, exc)
        return rollover(SessionState(), day)
    return rollover(SessionState.from_dict(raw), day)


def save_session(path: Path, state: SessionState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(state.to_dict(), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


@dataclass(frozen=True)
class ClickResult:
    click_key: str
    word: str
    key: str
    ok: bool
    count: int

    @property
    def result(self) -> str:
        return "ok" if self.ok else "bad"


class Session:
    """
    Live study session: settings, the mission, and the found-count ledger.

    All mutation goes through ``click``, ``reset`` and ``update``; ``state``
    produces the persistable snapshot.
    """

    def __init__(self, state: SessionState | None = None) -> None:
        state = state or SessionState(last_seen_day=today_key())
        self.mission_text = state.mission_text
        self.ignore_accents = state.ignore_accents
        self.only_mission = state.only_mission
        self.mode: CorpusMode = state.mode
        self.chapter = state.chapter
        self.last_seen_day = state.last_seen_day
        self.ledger = FoundLedger.from_mapping(state.found_counts)
        self.last_click: ClickResult | None = None
        self.mission: MissionSet = build_mission_set(self.mission_text, self.ignore_accents)

    @property
    def state(self) -> SessionState:
        return SessionState(
            mission_text=self.mission_text,
            ignore_accents=self.ignore_accents,
            only_mission=self.only_mission,
            mode=self.mode,
            chapter=self.chapter,
            found_counts=self.ledger.to_dict(),
            last_seen_day=self.last_seen_day,
        )

    def update(
        self,
        *,
        mission_text: str | None = None,
        ignore_accents: bool | None = None,
        only_mission: bool | None = None,
        mode: CorpusMode | None = None,
        chapter: int | None = None,
    ) -> None:
        rebuild = False
        if mission_text is not None and mission_text != self.mission_text:
            self.mission_text = mission_text
            rebuild = True
        if ignore_accents is not None and ignore_accents != self.ignore_accents:
            self.ignore_accents = ignore_accents
            rebuild = True
        if only_mission is not None:
            self.only_mission = only_mission
        if mode is not None:
            if mode not in CORPUS_MODES:
                raise ValueError(f"Unknown corpus mode: {mode!r}")
            self.mode = mode
        if chapter is not None:
            if not FIRST_CHAPTER <= chapter <= LAST_CHAPTER:
                raise ValueError(f"Chapter must be {FIRST_CHAPTER}..{LAST_CHAPTER}")
            self.chapter = chapter
        if rebuild:
            self.mission = build_mission_set(self.mission_text, self.ignore_accents)

    def click(self, word: str, click_key: str) -> ClickResult:
        key = comparison_key(word, self.ignore_accents)
        ok = is_match(word, self.mission, self.ignore_accents)
        count = self.ledger.record(key) if ok else self.ledger.count(key)
        result = ClickResult(click_key=click_key, word=word, key=key, ok=ok, count=count)
        self.last_click = result
        return result

    def clear_flash(self, click_key: str) -> None:
        if self.last_click is not None and self.last_click.click_key == click_key:
            self.last_click = None

    def reset(self) -> None:
        self.ledger.reset()
        self.last_click = None

    def roll_to(self, today: str) -> None:
        if self.last_seen_day != today:
            self.ledger.reset()
            self.last_seen_day = today

    def progress(self) -> MissionProgress:
        return self.ledger.progress(self.mission)
