from __future__ import annotations


class ActsVocabError(Exception):
    """Base class for errors raised by the text pipeline."""


class InvalidChapterError(ActsVocabError, ValueError):
    """Raised when a chapter is not an integer in the supported range."""

    def __init__(self, value: object, message: str | None = None) -> None:
        self.value = value
        super().__init__(message or f"Invalid chapter: {value!r}")


class UpstreamFetchError(ActsVocabError, ConnectionError):
    """Raised when chapter markup cannot be retrieved from the upstream site."""

    def __init__(self, chapter: int, status: int | None, message: str | None = None) -> None:
        self.chapter = chapter
        self.status = status
        if message is None:
            if status is None:
                message = f"Chapter {chapter}: upstream unreachable"
            else:
                message = f"Chapter {chapter}: upstream HTTP {status}"
        super().__init__(message)


class MalformedMarkupError(ActsVocabError, ValueError):
    """Raised when no verses can be recovered from a chapter's markup."""

    def __init__(self, chapter: int) -> None:
        self.chapter = chapter
        super().__init__(
            f"Chapter {chapter}: could not extract verses (markup format changed?)"
        )


class EmptyCorpusWarning(UserWarning):
    """Issued when the local text asset has no content."""


__all__ = [
    "ActsVocabError",
    "InvalidChapterError",
    "UpstreamFetchError",
    "MalformedMarkupError",
    "EmptyCorpusWarning",
]
