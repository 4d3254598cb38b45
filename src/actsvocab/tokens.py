from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Literal, Mapping

from .normalize import is_word_char

__all__ = [
    "Token",
    "TokenKind",
    "iter_tokens",
    "tokenize",
    "words",
    "serialize_tokens",
    "deserialize_tokens",
]

TokenKind = Literal["word", "separator"]
TOKEN_KINDS: tuple[str, ...] = ("word", "separator")


@dataclass(frozen=True)
class Token:
    """
    One span of the rendered text.

    ``word`` tokens are maximal runs of letters and combining marks; every
    other character (spaces, punctuation, digits, editorial signs) lands in a
    ``separator`` token. Joining the values of a token sequence in order gives
    back the text it was built from.
    """

    kind: TokenKind
    value: str

    @property
    def is_word(self) -> bool:
        return self.kind == "word"


def iter_tokens(text: str) -> Iterator[Token]:
    if not text:
        return
    start = 0
    in_word = is_word_char(text[0])
    for idx in range(1, len(text)):
        current = is_word_char(text[idx])
        if current != in_word:
            yield Token("word" if in_word else "separator", text[start:idx])
            start = idx
            in_word = current
    yield Token("word" if in_word else "separator", text[start:])


def tokenize(text: str) -> list[Token]:
    return list(iter_tokens(text))


def words(text: str) -> list[str]:
    return [token.value for token in iter_tokens(text) if token.is_word]


def serialize_tokens(tokens: Iterable[Token]) -> list[dict[str, object]]:
    return [{"kind": token.kind, "value": token.value} for token in tokens]


def deserialize_tokens(data: Iterable[Mapping[str, object]]) -> list[Token]:
    tokens: list[Token] = []
    for entry in data:
        if not isinstance(entry, Mapping):
            continue
        kind = entry.get("kind")
        value = entry.get("value")
        if kind not in TOKEN_KINDS or not isinstance(value, str) or not value:
            continue
        tokens.append(Token(kind=kind, value=value))  # type: ignore[arg-type]
    return tokens
