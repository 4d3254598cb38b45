from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import HTMLResponse, JSONResponse

from .corpus import (
    DEFAULT_UPSTREAM_BASE,
    DEFAULT_USER_AGENT,
    ChapterCache,
    ChapterClient,
    load_local_text,
    parse_chapter,
    search_verses,
)
from .errors import InvalidChapterError, MalformedMarkupError, UpstreamFetchError
from .mission import MissionSet, verse_has_mission_word
from .normalize import comparison_key
from .session import SESSION_FILENAME, Session, load_session, save_session, today_key
from .tokens import Token, tokenize

logger = logging.getLogger(__name__)

CACHE_FILENAME = ".acts-vocab-chapters.json"


@dataclass(slots=True)
class WebConfig:
    root: Path
    upstream_base: str = DEFAULT_UPSTREAM_BASE
    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = 30.0
    text_path: Path | None = None
    session_filename: str = SESSION_FILENAME
    cache_filename: str = CACHE_FILENAME


def _tokens_payload(tokens: list[Token], mission: MissionSet, ignore_accents: bool) -> list[dict[str, object]]:
    keys = mission.keys
    payload: list[dict[str, object]] = []
    for token in tokens:
        entry: dict[str, object] = {"kind": token.kind, "value": token.value}
        if token.is_word:
            entry["mission"] = comparison_key(token.value, ignore_accents) in keys
        payload.append(entry)
    return payload


def _session_payload(session: Session) -> dict[str, object]:
    progress = session.progress()
    last_click = session.last_click
    return {
        "state": session.state.to_dict(),
        "mission": [
            {"key": item.key, "display": item.display, "found": session.ledger.count(item.key)}
            for item in session.mission.items
        ],
        "progress": {"done": progress.done, "total": progress.total, "hits": progress.hits},
        "ledger_state": session.ledger.state(session.mission),
        "last_click": (
            {"click_key": last_click.click_key, "key": last_click.key, "result": last_click.result}
            if last_click is not None
            else None
        ),
    }


def create_app(config: WebConfig) -> FastAPI:
    root = config.root.expanduser().resolve()
    if not root.exists():
        raise FileNotFoundError(f"State directory not found: {root}")

    client = ChapterClient(config.upstream_base, user_agent=config.user_agent, timeout=config.timeout)
    cache = ChapterCache(client=client, path=root / config.cache_filename)
    cached = cache.load_file()
    if cached:
        logger.info("Loaded %d cached chapters from %s", cached, cache.path)
    session_path = root / config.session_filename
    session = Session(load_session(session_path))

    app = FastAPI(title="Acts vocabulary drill")
    app.state.config = config
    app.state.root = root
    app.state.cache = cache
    app.state.session = session

    cache_lock = threading.Lock()
    session_lock = threading.Lock()

    def _persist_session() -> None:
        save_session(session_path, session.state)

    def _roll_session() -> None:
        day = today_key()
        if session.last_seen_day != day:
            session.roll_to(day)
            _persist_session()

    @app.get("/api/na28")
    def api_na28(chapter: str | None = Query(None)):
        try:
            number = parse_chapter(chapter if chapter is not None else "")
        except InvalidChapterError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        try:
            markup = cache.client.fetch_markup(number)
        except UpstreamFetchError as exc:
            return JSONResponse({"error": str(exc), "status": exc.status}, status_code=502)
        return HTMLResponse(
            markup,
            status_code=200,
            headers={"cache-control": "no-store"},
        )

    @app.get("/api/chapters/{chapter}")
    def api_chapter(
        chapter: str,
        force: bool = Query(False),
        only_mission: bool | None = Query(None),
    ) -> JSONResponse:
        try:
            number = parse_chapter(chapter)
        except InvalidChapterError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        with cache_lock:
            verses = None if force else cache.get(number)
        if verses is None:
            # cache_lock is never held across the upstream request.
            try:
                verses = cache.fetch(number)
            except UpstreamFetchError as exc:
                raise HTTPException(status_code=502, detail=str(exc)) from exc
            except MalformedMarkupError as exc:
                raise HTTPException(status_code=422, detail=str(exc)) from exc
            with cache_lock:
                cache.put(number, verses)
                cache.save()
        with session_lock:
            mission = session.mission
            ignore_accents = session.ignore_accents
            filter_mission = session.only_mission if only_mission is None else only_mission
        payload = []
        for verse in verses:
            if filter_mission and not verse_has_mission_word(verse.text, mission, ignore_accents):
                continue
            payload.append(
                {
                    "v": verse.number,
                    "t": verse.text,
                    "tokens": _tokens_payload(tokenize(verse.text), mission, ignore_accents),
                }
            )
        return JSONResponse({"chapter": number, "verses": payload, "count": len(verses)})

    @app.get("/api/search")
    def api_search(q: str = Query(""), limit: int = Query(200)) -> JSONResponse:
        with session_lock:
            ignore_accents = session.ignore_accents
        with cache_lock:
            corpus = cache.corpus()
        hits = search_verses(corpus, q, ignore_accents, limit=limit)
        return JSONResponse(
            {
                "query": comparison_key(q, ignore_accents),
                "results": [{"ch": hit.chapter, "v": hit.verse, "t": hit.text} for hit in hits],
                "chapters_loaded": sorted(corpus),
            }
        )

    @app.get("/api/text")
    def api_text() -> JSONResponse:
        if config.text_path is None or not config.text_path.exists():
            raise HTTPException(status_code=404, detail="Local text asset not configured.")
        local = load_local_text(config.text_path)
        with session_lock:
            mission = session.mission
            ignore_accents = session.ignore_accents
        return JSONResponse(
            {
                "empty": local.empty,
                "tokens": _tokens_payload(tokenize(local.text), mission, ignore_accents),
            }
        )

    @app.get("/api/session")
    def api_session() -> JSONResponse:
        with session_lock:
            _roll_session()
            return JSONResponse(_session_payload(session))

    @app.put("/api/session")
    def api_update_session(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        mission_text = payload.get("mission_text")
        if mission_text is not None and not isinstance(mission_text, str):
            raise HTTPException(status_code=400, detail="mission_text must be a string.")
        flags: dict[str, bool] = {}
        for name in ("ignore_accents", "only_mission"):
            value = payload.get(name)
            if value is None:
                continue
            if not isinstance(value, bool):
                raise HTTPException(status_code=400, detail=f"{name} must be a boolean.")
            flags[name] = value
        mode = payload.get("mode")
        if mode is not None and mode not in ("na28", "txt"):
            raise HTTPException(status_code=400, detail="mode must be 'na28' or 'txt'.")
        chapter_value = payload.get("chapter")
        chapter: int | None = None
        if chapter_value is not None:
            try:
                chapter = parse_chapter(chapter_value)
            except InvalidChapterError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        with session_lock:
            _roll_session()
            session.update(
                mission_text=mission_text,
                mode=mode,  # type: ignore[arg-type]
                chapter=chapter,
                **flags,
            )
            _persist_session()
            return JSONResponse(_session_payload(session))

    @app.post("/api/session/click")
    def api_click(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        word = payload.get("word")
        if not isinstance(word, str) or not word.strip():
            raise HTTPException(status_code=400, detail="word is required.")
        click_key = payload.get("click_key")
        if not isinstance(click_key, str) or not click_key:
            click_key = word
        with session_lock:
            _roll_session()
            result = session.click(word, click_key)
            if result.ok:
                _persist_session()
            response = _session_payload(session)
        response["click"] = {
            "click_key": result.click_key,
            "key": result.key,
            "result": result.result,
            "count": result.count,
        }
        return JSONResponse(response)

    @app.post("/api/session/reset")
    def api_reset() -> JSONResponse:
        with session_lock:
            session.reset()
            _persist_session()
            return JSONResponse(_session_payload(session))

    return app
