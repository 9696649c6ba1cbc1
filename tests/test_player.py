from __future__ import annotations

import io
import json
from pathlib import Path

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from PIL import Image

from audioshelf.library import list_books_sorted
from audioshelf.player import PlayerConfig, create_app

AUDIO_BYTES = b"ID3\x03\x00\x00\x00fake-mp3-payload"


def _png_bytes(size: tuple[int, int] = (40, 20)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, (10, 120, 200)).save(buffer, format="PNG")
    return buffer.getvalue()


def _find_route(app, path: str, method: str):
    method = method.upper()
    for route in app.router.routes:
        if getattr(route, "path", None) == path and method in getattr(route, "methods", set()):
            return route.endpoint
    raise RuntimeError(f"Route {method} {path} not found")


@pytest.fixture
def library(tmp_path: Path) -> Path:
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def probed_duration(monkeypatch) -> dict[str, float]:
    state = {"duration": 10.0}

    def _fake_probe(path, **kwargs):
        return state["duration"]

    monkeypatch.setattr("audioshelf.uploads.probe_duration", _fake_probe)
    return state


@pytest.fixture
def client(library: Path, probed_duration) -> TestClient:
    app = create_app(PlayerConfig(root=library))
    with TestClient(app) as test_client:
        yield test_client


def _upload(client: TestClient, *, transcript: bytes | None = None, **overrides):
    data = {"title": "My Book", "author": "Jane Doe"}
    data.update(overrides.pop("data", {}))
    files = {
        "audio": ("chapter one.mp3", AUDIO_BYTES, "audio/mpeg"),
        "cover": ("cover.png", _png_bytes(), "image/png"),
    }
    if transcript is not None:
        files["transcript"] = ("book.txt", transcript, "text/plain")
    files.update(overrides.pop("files", {}))
    for key, value in list(files.items()):
        if value is None:
            files.pop(key)
    return client.post("/api/books", data=data, files=files)


def test_index_serves_player_page(client: TestClient) -> None:
    response = client.get("/")
    assert response.status_code == 200
    assert "Your Audiobooks" in response.text
    assert "__FAVICON__" not in response.text
    assert "data:image/svg+xml," in response.text
    assert "__PROGRESS_INTERVAL__" not in response.text


def test_api_root_message(client: TestClient) -> None:
    assert client.get("/api").json() == {"message": "Audiobook API Server"}


def test_upload_creates_book_with_timed_transcript(client: TestClient, library: Path) -> None:
    response = _upload(client, transcript=b"Hello world.\nThis is a test!")

    assert response.status_code == 201
    book = response.json()
    assert book["title"] == "My Book"
    assert book["author"] == "Jane Doe"
    assert book["duration"] == 10.0
    assert book["durationLabel"] == "0:10"
    assert book["progress"] == 0.0
    texts = [segment["text"] for segment in book["transcript"]]
    assert texts == ["Hello world.", "This is a test!"]
    assert book["transcript"][0]["startTime"] == 0.0
    assert book["transcript"][1]["endTime"] == pytest.approx(10.0, abs=0.01)

    book_dir = library / book["id"]
    stored = sorted(p.name for p in book_dir.iterdir() if not p.name.startswith("."))
    assert len(stored) == 2
    assert any(name.endswith("-chapter_one.mp3") for name in stored)
    assert any(name.endswith("-cover.png") for name in stored)

    audio = client.get(book["audioUrl"])
    assert audio.status_code == 200
    assert audio.content == AUDIO_BYTES

    cover = client.get(book["coverUrl"])
    assert cover.status_code == 200
    with Image.open(io.BytesIO(cover.content)) as image:
        assert image.size == (40, 40)


def test_upload_accepts_pasted_transcript_text(client: TestClient) -> None:
    response = _upload(client, data={"transcript_text": "One."})

    assert response.status_code == 201
    assert response.json()["transcript"] == [
        {"text": "One.", "startTime": 0.0, "endTime": 10.0}
    ]


def test_empty_transcript_file_keeps_pasted_text(client: TestClient) -> None:
    response = _upload(
        client,
        transcript=b"  \n",
        data={"transcript_text": "Hello world. This is a test!"},
    )

    assert response.status_code == 201
    texts = [segment["text"] for segment in response.json()["transcript"]]
    assert texts == ["Hello world.", "This is a test!"]


def test_upload_without_transcript_has_empty_transcript(client: TestClient) -> None:
    response = _upload(client)

    assert response.status_code == 201
    assert response.json()["transcript"] == []


def test_failed_probe_keeps_book_but_skips_transcript(client: TestClient, probed_duration) -> None:
    probed_duration["duration"] = 0.0

    response = _upload(client, transcript=b"Some text. More text.")

    assert response.status_code == 201
    book = response.json()
    assert book["duration"] == 0.0
    assert book["transcript"] == []


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"files": {"cover": None}}, "Both audio and cover files are required"),
        ({"data": {"title": "  "}}, "Title and author are required"),
        (
            {"files": {"audio": ("notes.txt", b"text", "text/plain")}},
            "Invalid audio file type. Only audio files are allowed.",
        ),
        (
            {"files": {"cover": ("cover.pdf", b"%PDF", "application/pdf")}},
            "Invalid image file type. Only image files are allowed.",
        ),
        (
            {"files": {"transcript": ("t.pdf", b"%PDF", "application/pdf")}},
            "Invalid transcript file type. Only plain text files are allowed.",
        ),
    ],
)
def test_upload_validation_errors(client: TestClient, library: Path, overrides, message: str) -> None:
    response = _upload(client, **overrides)

    assert response.status_code == 400
    assert response.json()["detail"] == message
    assert list(library.iterdir()) == []


def test_upload_too_large_is_rejected_and_cleaned_up(library: Path, probed_duration) -> None:
    app = create_app(PlayerConfig(root=library, max_upload_bytes=8))
    with TestClient(app) as client:
        response = _upload(client)

    assert response.status_code == 400
    assert response.json()["detail"] == "File is too large. Maximum size is 8 bytes"
    assert list(library.iterdir()) == []


def test_books_listing_is_a_plain_list_when_empty(client: TestClient) -> None:
    response = client.get("/api/books")

    assert response.status_code == 200
    assert response.json() == []


def test_books_listing_and_sorting(client: TestClient) -> None:
    first = _upload(client, data={"title": "First", "author": "Zed"}).json()
    second = _upload(client, data={"title": "Second", "author": "Amy"}).json()

    listing = client.get("/api/books").json()
    assert isinstance(listing, list)
    ids = [book["id"] for book in listing]
    assert set(ids) == {first["id"], second["id"]}

    by_author = client.get("/api/books", params={"sort": "author"}).json()
    assert [book["title"] for book in by_author] == ["Second", "First"]

    assert client.get("/api/books", params={"sort": "nope"}).status_code == 400


def test_get_single_book_and_missing_book(client: TestClient) -> None:
    book = _upload(client).json()

    assert client.get(f"/api/books/{book['id']}").json()["title"] == "My Book"
    missing = client.get("/api/books/does-not-exist")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Book not found"


def test_transcript_endpoints(client: TestClient) -> None:
    book = _upload(client, transcript=b"Hello world. This is a test!").json()

    segments = client.get(f"/api/books/{book['id']}/transcript").json()["segments"]
    assert len(segments) == 2

    active = client.get(f"/api/books/{book['id']}/transcript/at", params={"time": 6.0}).json()
    assert active["index"] == 1
    assert active["segment"]["text"] == "This is a test!"

    paused = client.get(f"/api/books/{book['id']}/transcript/at", params={"time": 4.6}).json()
    assert paused == {"index": None, "segment": None}


def test_progress_is_persisted_and_clamped(client: TestClient, library: Path) -> None:
    book = _upload(client).json()
    url = f"/api/books/{book['id']}/progress"

    response = client.patch(url, json={"progress": 4.25})
    assert response.status_code == 200
    assert response.json()["progress"] == 4.25
    assert client.get(f"/api/books/{book['id']}").json()["progress"] == 4.25

    assert client.patch(url, json={"progress": 99}).json()["progress"] == 10.0
    assert client.post(url, json={"progress": 3}).json()["progress"] == 3.0

    assert client.patch(url, json={"progress": -1}).status_code == 400
    assert client.patch(url, json={"progress": "soon"}).status_code == 400

    played = list_books_sorted(library, "played")
    assert played[0].progress_updated_at is not None


def test_delete_book_endpoint_removes_directory(client: TestClient, library: Path) -> None:
    book = _upload(client).json()

    response = client.delete(f"/api/books/{book['id']}")
    assert response.status_code == 200
    assert response.json() == {"deleted": True, "book": book["id"]}
    assert not (library / book["id"]).exists()
    assert client.delete(f"/api/books/{book['id']}").status_code == 404


def test_delete_route_can_be_called_directly(library: Path, probed_duration) -> None:
    book_dir = library / "Book One"
    book_dir.mkdir()
    (book_dir / ".audioshelf-book.json").write_text(
        json.dumps(
            {"title": "Book One", "author": "A", "cover": "c.png", "audio": "a.mp3"}
        ),
        encoding="utf-8",
    )
    app = create_app(PlayerConfig(root=library))
    delete_route = _find_route(app, "/api/books/{book_id}", "DELETE")

    response = delete_route("Book One")

    assert response.status_code == 200
    payload = json.loads(response.body)
    assert payload == {"deleted": True, "book": "Book One"}
    assert not book_dir.exists()


def test_book_ids_cannot_escape_library(library: Path, probed_duration) -> None:
    outside = library.parent / "outside"
    outside.mkdir()
    (outside / ".audioshelf-book.json").write_text(
        json.dumps({"title": "x", "author": "y", "cover": "c", "audio": "a"}),
        encoding="utf-8",
    )

    app = create_app(PlayerConfig(root=library))
    get_route = _find_route(app, "/api/books/{book_id}", "GET")

    for book_id in ("..", "../outside", "", "sub\\dir"):
        with pytest.raises(HTTPException) as excinfo:
            get_route(book_id)
        assert excinfo.value.status_code == 404
