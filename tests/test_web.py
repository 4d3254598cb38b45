from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest
from fastapi import HTTPException

from actsvocab.errors import UpstreamFetchError
from actsvocab.web import WebConfig, create_app

CHAPTER_HTML = (
    "<html><body><div>"
    "<p><sup>1</sup>Ἄνδρες ἀδελφοί, εἶπεν ὁ Πέτρος.</p>"
    "<p><sup>2</sup>καὶ ἦν φόβος μέγας.</p>"
    "</div></body></html>"
)


class _FakeClient:
    def __init__(self, markup: str = CHAPTER_HTML, error: Exception | None = None) -> None:
        self.markup = markup
        self.error = error
        self.calls: list[int] = []

    def fetch_markup(self, chapter: int) -> str:
        self.calls.append(chapter)
        if self.error is not None:
            raise self.error
        return self.markup

    def close(self) -> None:
        pass


def _find_route(app, path: str, method: str):
    method = method.upper()
    for route in app.router.routes:
        if getattr(route, "path", None) == path and method in getattr(route, "methods", set()):
            return route.endpoint
    raise RuntimeError(f"Route {method} {path} not found")


def _app(tmp_path: Path, client: _FakeClient | None = None, **kwargs):
    app = create_app(WebConfig(root=tmp_path, **kwargs))
    app.state.cache.client = client or _FakeClient()
    return app


@pytest.mark.parametrize("chapter", [None, "0", "29", "abc"])
def test_proxy_rejects_invalid_chapter_before_fetching(tmp_path: Path, chapter) -> None:
    client = _FakeClient()
    app = _app(tmp_path, client)
    response = _find_route(app, "/api/na28", "GET")(chapter=chapter)
    assert response.status_code == 400
    assert "error" in json.loads(response.body)
    assert client.calls == []


def test_proxy_returns_raw_markup(tmp_path: Path) -> None:
    client = _FakeClient()
    app = _app(tmp_path, client)
    response = _find_route(app, "/api/na28", "GET")(chapter="12")
    assert response.status_code == 200
    assert response.body.decode("utf-8") == CHAPTER_HTML
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["content-type"].startswith("text/html")
    assert client.calls == [12]


def test_proxy_maps_upstream_failure_to_502(tmp_path: Path) -> None:
    app = _app(tmp_path, _FakeClient(error=UpstreamFetchError(5, 404)))
    response = _find_route(app, "/api/na28", "GET")(chapter="5")
    assert response.status_code == 502
    assert "HTTP 404" in json.loads(response.body)["error"]


def test_chapter_endpoint_returns_tokenized_verses(tmp_path: Path) -> None:
    client = _FakeClient()
    app = _app(tmp_path, client)
    route = _find_route(app, "/api/chapters/{chapter}", "GET")
    payload = json.loads(route(chapter="1", force=False, only_mission=None).body)
    assert payload["chapter"] == 1
    assert [verse["v"] for verse in payload["verses"]] == [1, 2]
    tokens = payload["verses"][0]["tokens"]
    assert "".join(token["value"] for token in tokens) == payload["verses"][0]["t"]
    eipen = next(token for token in tokens if token["value"] == "εἶπεν")
    assert eipen["mission"] is True
    route(chapter="1", force=False, only_mission=None)
    assert client.calls == [1]
    route(chapter="1", force=True, only_mission=None)
    assert client.calls == [1, 1]
    assert (tmp_path / ".acts-vocab-chapters.json").exists()


def test_chapter_endpoint_filters_to_mission_verses(tmp_path: Path) -> None:
    app = _app(tmp_path)
    route = _find_route(app, "/api/chapters/{chapter}", "GET")
    payload = json.loads(route(chapter="1", force=False, only_mission=True).body)
    assert [verse["v"] for verse in payload["verses"]] == [1]
    assert payload["count"] == 2


def test_chapter_endpoint_error_statuses(tmp_path: Path) -> None:
    route = _find_route(_app(tmp_path), "/api/chapters/{chapter}", "GET")
    with pytest.raises(HTTPException) as excinfo:
        route(chapter="29", force=False, only_mission=None)
    assert excinfo.value.status_code == 400

    broken = _app(tmp_path, _FakeClient(markup="<html><body><p>gone</p></body></html>"))
    with pytest.raises(HTTPException) as excinfo:
        _find_route(broken, "/api/chapters/{chapter}", "GET")(chapter="7", force=False, only_mission=None)
    assert excinfo.value.status_code == 422
    assert "Chapter 7" in excinfo.value.detail

    offline = _app(tmp_path, _FakeClient(error=UpstreamFetchError(8, None)))
    with pytest.raises(HTTPException) as excinfo:
        _find_route(offline, "/api/chapters/{chapter}", "GET")(chapter="8", force=True, only_mission=None)
    assert excinfo.value.status_code == 502


def test_search_covers_loaded_chapters(tmp_path: Path) -> None:
    app = _app(tmp_path)
    _find_route(app, "/api/chapters/{chapter}", "GET")(chapter="3", force=False, only_mission=None)
    payload = json.loads(_find_route(app, "/api/search", "GET")(q="ειπ", limit=200).body)
    assert payload["query"] == "ειπ"
    assert payload["results"] == [{"ch": 3, "v": 1, "t": "Ἄνδρες ἀδελφοί, εἶπεν ὁ Πέτρος."}]
    assert payload["chapters_loaded"] == [3]


class _SlowClient(_FakeClient):
    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def fetch_markup(self, chapter: int) -> str:
        self.started.set()
        assert self.release.wait(timeout=5)
        return super().fetch_markup(chapter)


def test_search_is_served_while_a_chapter_download_is_in_flight(tmp_path: Path) -> None:
    client = _SlowClient()
    app = _app(tmp_path, client)
    app.state.cache.put(1, [])
    chapter_route = _find_route(app, "/api/chapters/{chapter}", "GET")
    worker = threading.Thread(
        target=chapter_route, kwargs={"chapter": "2", "force": False, "only_mission": None}
    )
    worker.start()
    try:
        assert client.started.wait(timeout=5)
        payload = json.loads(_find_route(app, "/api/search", "GET")(q="ειπ", limit=200).body)
        assert worker.is_alive()
        assert payload["chapters_loaded"] == [1]
    finally:
        client.release.set()
        worker.join(timeout=5)
    assert not worker.is_alive()
    assert app.state.cache.get(2) is not None


def test_chapter_cache_file_written_only_after_a_download(tmp_path: Path) -> None:
    client = _FakeClient()
    app = _app(tmp_path, client)
    cache = app.state.cache
    saves: list[int] = []
    original_save = cache.save

    def _counting_save() -> None:
        saves.append(1)
        original_save()

    cache.save = _counting_save
    route = _find_route(app, "/api/chapters/{chapter}", "GET")
    route(chapter="1", force=False, only_mission=None)
    assert len(saves) == 1
    route(chapter="1", force=False, only_mission=None)
    route(chapter="1", force=False, only_mission=None)
    assert len(saves) == 1
    assert client.calls == [1]
    route(chapter="1", force=True, only_mission=None)
    assert len(saves) == 2


def test_click_and_reset_update_the_persisted_ledger(tmp_path: Path) -> None:
    app = _app(tmp_path)
    click = _find_route(app, "/api/session/click", "POST")
    payload = json.loads(click({"word": "Θεός", "click_key": "act-1-1::0"}).body)
    assert payload["click"] == {"click_key": "act-1-1::0", "key": "θεος", "result": "ok", "count": 1}
    assert payload["progress"]["done"] == 1
    assert payload["ledger_state"] == "partial"
    saved = json.loads((tmp_path / ".acts-vocab-session.json").read_text(encoding="utf-8"))
    assert saved["found_counts"] == {"θεος": 1}

    miss = json.loads(click({"word": "φόβος"}).body)
    assert miss["click"]["result"] == "bad"

    reset = json.loads(_find_route(app, "/api/session/reset", "POST")().body)
    assert reset["progress"]["hits"] == 0
    assert reset["last_click"] is None
    saved = json.loads((tmp_path / ".acts-vocab-session.json").read_text(encoding="utf-8"))
    assert saved["found_counts"] == {}


def test_session_update_validates_payload(tmp_path: Path) -> None:
    route = _find_route(_app(tmp_path), "/api/session", "PUT")
    with pytest.raises(HTTPException) as excinfo:
        route({"ignore_accents": "yes"})
    assert excinfo.value.status_code == 400
    with pytest.raises(HTTPException) as excinfo:
        route({"chapter": "abc"})
    assert excinfo.value.status_code == 400

    payload = json.loads(route({"mission_text": "λογος\nΛΟΓΟΣ", "chapter": 4, "mode": "txt"}).body)
    assert [item["key"] for item in payload["mission"]] == ["λογος"]
    assert payload["state"]["chapter"] == 4
    assert payload["state"]["mode"] == "txt"


def test_session_is_restored_from_disk(tmp_path: Path) -> None:
    app = _app(tmp_path)
    _find_route(app, "/api/session", "PUT")({"mission_text": "πετρος"})
    _find_route(app, "/api/session/click", "POST")({"word": "Πέτρος"})
    restored = json.loads(_find_route(_app(tmp_path), "/api/session", "GET")().body)
    assert restored["mission"] == [{"key": "πετρος", "display": "πετρος", "found": 1}]


def test_text_endpoint_tokenizes_local_asset(tmp_path: Path) -> None:
    text_path = tmp_path / "acts.txt"
    text_path.write_text("Ἐγένετο δὲ θεὸς.", encoding="utf-8")
    app = _app(tmp_path, text_path=text_path)
    payload = json.loads(_find_route(app, "/api/text", "GET")().body)
    assert payload["empty"] is False
    assert "".join(token["value"] for token in payload["tokens"]) == "Ἐγένετο δὲ θεὸς."
    theos = next(token for token in payload["tokens"] if token["value"] == "θεὸς")
    assert theos["mission"] is True


def test_text_endpoint_reports_empty_asset(tmp_path: Path) -> None:
    text_path = tmp_path / "acts.txt"
    text_path.write_text("", encoding="utf-8")
    app = _app(tmp_path, text_path=text_path)
    with pytest.warns(UserWarning):
        payload = json.loads(_find_route(app, "/api/text", "GET")().body)
    assert payload == {"empty": True, "tokens": []}


def test_create_app_requires_existing_root(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        create_app(WebConfig(root=tmp_path / "missing"))
