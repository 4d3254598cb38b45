from __future__ import annotations

import re
import unicodedata

__all__ = [
    "canonicalize",
    "clean_text",
    "comparison_key",
    "is_mark",
    "is_word_char",
    "strip_diacritics",
]

_WS_RE = re.compile(r"\s+")


def canonicalize(text: str) -> str:
    return unicodedata.normalize("NFC", text)


def is_mark(ch: str) -> bool:
    return unicodedata.category(ch).startswith("M")


def is_word_char(ch: str) -> bool:
    """Letters and combining marks of any script make up words."""
    return unicodedata.category(ch)[0] in ("L", "M")


def strip_diacritics(text: str) -> str:
    """
    Remove accents, breathings and iota subscripts.

    The text is decomposed so that every diacritic becomes its own combining
    code point, the marks are dropped, and the bare letters are recomposed.
    """
    decomposed = unicodedata.normalize("NFD", text)
    bare = "".join(ch for ch in decomposed if not is_mark(ch))
    return unicodedata.normalize("NFC", bare)


def comparison_key(text: str, ignore_accents: bool) -> str:
    key = canonicalize(text).lower()
    if ignore_accents:
        key = strip_diacritics(key)
    return key.strip()


def clean_text(text: str) -> str:
    return _WS_RE.sub(" ", text.replace("\u00a0", " ")).strip()
