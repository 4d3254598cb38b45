from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal, Mapping

from .normalize import comparison_key
from .tokens import iter_tokens

__all__ = [
    "DEFAULT_MISSION",
    "FoundLedger",
    "LedgerState",
    "MissionItem",
    "MissionProgress",
    "MissionSet",
    "build_mission_set",
    "is_match",
    "matches_search",
    "verse_has_mission_word",
]

# Frequent words of Acts, written without accents.
DEFAULT_MISSION: tuple[str, ...] = (
    "ειπεν",
    "εστιν",
    "θεος",
    "ουκ",
    "θεου",
    "παυλος",
    "εγενετο",
    "συν",
    "ανδρες",
    "κυριου",
    "ημερας",
    "ιερουσαλημ",
    "πετρος",
    "ονοματι",
    "πνευμα",
    "ιησου",
    "λογον",
    "θεον",
    "παυλον",
    "ησαν",
    "ουτως",
    "ιησουν",
    "λεγων",
    "αδελφοι",
    "νυν",
)

LedgerState = Literal["empty", "partial", "complete"]


@dataclass(frozen=True)
class MissionItem:
    key: str
    display: str


@dataclass(frozen=True)
class MissionSet:
    items: tuple[MissionItem, ...] = ()
    ignore_accents: bool = True
    keys: frozenset[str] = field(init=False, repr=False, compare=False)
    display: dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "keys", frozenset(item.key for item in self.items))
        object.__setattr__(self, "display", {item.key: item.display for item in self.items})

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key in self.keys

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


def build_mission_set(text: str, ignore_accents: bool) -> MissionSet:
    """
    Turn user input (one word per line) into a mission.

    Blank lines are skipped and a line whose key was already seen is dropped,
    so the first spelling of a word is the one shown back to the user.
    """
    items: list[MissionItem] = []
    seen: set[str] = set()
    for line in text.splitlines():
        display = line.strip()
        if not display:
            continue
        key = comparison_key(display, ignore_accents)
        if not key or key in seen:
            continue
        seen.add(key)
        items.append(MissionItem(key=key, display=display))
    return MissionSet(items=tuple(items), ignore_accents=ignore_accents)


def is_match(word: str, mission: MissionSet | Iterable[str], ignore_accents: bool) -> bool:
    key = comparison_key(word, ignore_accents)
    if not key:
        return False
    keys = mission.keys if isinstance(mission, MissionSet) else mission
    return key in keys


def matches_search(word: str, query_key: str, ignore_accents: bool = True) -> bool:
    if not query_key:
        return True
    return query_key in comparison_key(word, ignore_accents)


def verse_has_mission_word(text: str, mission: MissionSet, ignore_accents: bool) -> bool:
    keys = mission.keys
    if not keys:
        return False
    for token in iter_tokens(text):
        if token.is_word and comparison_key(token.value, ignore_accents) in keys:
            return True
    return False


@dataclass(frozen=True)
class MissionProgress:
    done: int
    total: int
    hits: int


@dataclass
class FoundLedger:
    """Hit counts per comparison key for one study session."""

    counts: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object] | None) -> "FoundLedger":
        counts: dict[str, int] = {}
        if isinstance(data, Mapping):
            for key, value in data.items():
                if not isinstance(key, str) or not key:
                    continue
                if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                    continue
                counts[key] = value
        return cls(counts=counts)

    def record(self, key: str) -> int:
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def count(self, key: str) -> int:
        return self.counts.get(key, 0)

    def total(self) -> int:
        return sum(self.counts.values())

    def reset(self) -> None:
        self.counts.clear()

    def progress(self, mission: MissionSet) -> MissionProgress:
        done = sum(1 for item in mission.items if self.count(item.key) > 0)
        return MissionProgress(done=done, total=len(mission.items), hits=self.total())

    def state(self, mission: MissionSet) -> LedgerState:
        progress = self.progress(mission)
        if progress.done == 0:
            return "empty"
        if progress.done < progress.total:
            return "partial"
        return "complete"

    def to_dict(self) -> dict[str, int]:
        return dict(self.counts)
