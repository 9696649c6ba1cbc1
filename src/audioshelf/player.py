from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from fastapi import Body, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse

from .library import (
    SORT_MODES,
    BookRecord,
    book_payload,
    delete_book,
    is_book_dir,
    list_books_sorted,
    load_book_record,
    update_progress,
)
from .transcript import find_segment_index, segments_to_payload
from .uploads import (
    DEFAULT_MAX_UPLOAD_BYTES,
    UploadError,
    UploadSettings,
    ingest_book,
)
from .web_assets import AUDIOSHELF_FAVICON_URL

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlayerConfig:
    root: Path
    ffprobe_path: str = "ffprobe"
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    progress_save_interval: float = 5.0
    title: str = "Your Audiobooks"


def _normalize_sort_mode(value: str | None) -> str:
    if not value:
        return "recent"
    normalized = value.strip().lower()
    if normalized in SORT_MODES:
        return normalized
    raise HTTPException(status_code=400, detail="Invalid sort mode.")


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>__TITLE__</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="icon" type="image/svg+xml" href="__FAVICON__">
  <style>
    :root {
      color-scheme: dark;
      font-family: -apple-system, BlinkMacSystemFont, "Helvetica Neue", "Segoe UI", sans-serif;
      --bg: #0f1320;
      --panel: #171c2c;
      --panel-alt: #1f2538;
      --text: #f5f5f5;
      --muted: #9aa0b5;
      --accent: #3b82f6;
      --accent-dark: #2563eb;
      --danger: #f87171;
      --radius: 16px;
    }
    body {
      margin: 0;
      background: var(--bg);
      color: var(--text);
    }
    .hidden {
      display: none !important;
    }
    header {
      padding: 1.3rem 1.6rem 1rem;
      background: linear-gradient(135deg, rgba(59,130,246,0.18), transparent);
      display: flex;
      align-items: center;
      justify-content: space-between;
      gap: 1rem;
      flex-wrap: wrap;
    }
    header h1 {
      margin: 0;
      font-size: 1.6rem;
      font-weight: 700;
    }
    main {
      padding: 0 1.6rem 2rem;
      display: flex;
      flex-direction: column;
      gap: 1.4rem;
    }
    section.panel {
      background: var(--panel);
      border-radius: var(--radius);
      margin-top: 1rem;
      padding: 1.2rem 1.4rem;
      box-shadow: 0 16px 30px rgba(7, 9, 19, 0.28);
    }
    section.panel h2 {
      margin: 0 0 0.8rem;
      font-size: 1.1rem;
    }
    button, select, input[type=text] {
      font: inherit;
      color: var(--text);
      background: var(--panel-alt);
      border: 1px solid #2c3350;
      border-radius: 10px;
      padding: 0.45rem 0.8rem;
    }
    button {
      cursor: pointer;
    }
    button.primary {
      background: var(--accent);
      border-color: var(--accent);
    }
    button.primary:hover {
      background: var(--accent-dark);
    }
    button.danger {
      color: var(--danger);
    }
    .upload-form {
      display: grid;
      grid-template-columns: repeat(auto-fit, minmax(220px, 1fr));
      gap: 0.8rem;
      align-items: end;
    }
    .upload-form label {
      display: flex;
      flex-direction: column;
      gap: 0.3rem;
      font-size: 0.9rem;
      color: var(--muted);
    }
    .status-line {
      margin-top: 0.6rem;
      min-height: 1.2em;
      color: var(--muted);
      font-size: 0.9rem;
    }
    .status-line.error {
      color: var(--danger);
    }
    .books-grid {
      display: grid;
      grid-template-columns: repeat(auto-fill, minmax(180px, 1fr));
      gap: 1.2rem;
    }
    .book-tile {
      background: var(--panel-alt);
      border-radius: 14px;
      overflow: hidden;
      cursor: pointer;
      transition: transform 0.2s ease, box-shadow 0.2s ease;
    }
    .book-tile:hover {
      transform: scale(1.04);
      box-shadow: 0 18px 32px rgba(0, 0, 0, 0.35);
    }
    .book-tile img {
      width: 100%;
      aspect-ratio: 1 / 1;
      object-fit: cover;
      display: block;
      background: #000;
    }
    .book-tile .meta {
      padding: 0.7rem 0.9rem 0.9rem;
    }
    .book-tile h3, .book-tile p {
      margin: 0;
      white-space: nowrap;
      overflow: hidden;
      text-overflow: ellipsis;
    }
    .book-tile p {
      margin-top: 0.2rem;
      color: var(--muted);
      font-size: 0.9rem;
    }
    .empty {
      color: var(--muted);
    }
    .player-layout {
      max-width: 780px;
      margin: 0 auto;
    }
    .player-cover {
      width: 100%;
      aspect-ratio: 16 / 9;
      object-fit: contain;
      background: #000;
      border-radius: 12px;
    }
    .player-heading {
      text-align: center;
      margin: 1rem 0;
    }
    .player-heading h2 {
      margin: 0 0 0.3rem;
      font-size: 1.5rem;
    }
    .player-heading p {
      margin: 0;
      color: var(--muted);
    }
    .transcript {
      background: #0b0e18;
      border-radius: 12px;
      padding: 0.8rem 1rem;
      height: 12rem;
      overflow-y: auto;
      margin-bottom: 1.2rem;
    }
    .transcript p {
      margin: 0 0 0.8rem;
      cursor: pointer;
      color: #d1d5db;
      font-size: 1.05rem;
      transition: color 0.15s ease;
    }
    .transcript p:hover {
      color: #60a5fa;
    }
    .transcript p.active {
      color: var(--accent);
      font-weight: 600;
    }
    .scrubber {
      width: 100%;
      accent-color: var(--accent);
    }
    .times {
      display: flex;
      justify-content: space-between;
      color: var(--muted);
      font-size: 0.85rem;
      margin-top: 0.3rem;
    }
    .controls {
      display: flex;
      align-items: center;
      justify-content: center;
      gap: 1rem;
      margin: 1.2rem 0;
    }
    .controls .play {
      width: 4rem;
      height: 4rem;
      border-radius: 50%;
      font-size: 1.2rem;
    }
    .volume {
      display: flex;
      align-items: center;
      justify-content: center;
      gap: 0.5rem;
      color: var(--muted);
    }
    .volume input {
      width: 8rem;
      accent-color: var(--accent);
    }
    .player-actions {
      display: flex;
      justify-content: space-between;
      margin-bottom: 1rem;
    }
  </style>
</head>
<body>
  <header>
    <h1>__TITLE__</h1>
    <label>
      Sort
      <select id="books-sort">
        <option value="recent">Recently added</option>
        <option value="author">Author</option>
        <option value="played">Recently played</option>
      </select>
    </label>
  </header>
  <main>
    <section class="panel" id="library-panel">
      <h2>Library</h2>
      <div class="books-grid" id="books-grid"></div>
      <p class="empty hidden" id="books-empty">No audiobooks yet. Upload one below.</p>
    </section>
    <section class="panel" id="upload-panel">
      <h2>Upload</h2>
      <form class="upload-form" id="upload-form">
        <label>Title<input type="text" name="title" required></label>
        <label>Author<input type="text" name="author" required></label>
        <label>Audio<input type="file" name="audio" accept="audio/*" required></label>
        <label>Cover<input type="file" name="cover" accept="image/*" required></label>
        <label>Transcript (optional)<input type="file" name="transcript" accept="text/plain,.txt"></label>
        <button class="primary" type="submit" id="upload-submit">Upload</button>
      </form>
      <div class="status-line" id="upload-status"></div>
    </section>
    <section class="panel hidden" id="player-panel">
      <div class="player-layout">
        <div class="player-actions">
          <button type="button" id="back-button">&larr; Back to Library</button>
          <button type="button" class="danger" id="delete-button">Delete</button>
        </div>
        <img class="player-cover" id="player-cover" alt="">
        <div class="player-heading">
          <h2 id="player-title"></h2>
          <p id="player-author"></p>
        </div>
        <div class="transcript" id="transcript"></div>
        <input class="scrubber" id="scrubber" type="range" min="0" max="0" step="0.1" value="0">
        <div class="times">
          <span id="current-time">0:00</span>
          <span id="total-time">0:00</span>
        </div>
        <div class="controls">
          <button type="button" id="skip-back">&#x23EA; 30s</button>
          <button type="button" class="primary play" id="play-toggle">&#x25B6;</button>
          <button type="button" id="skip-forward">30s &#x23E9;</button>
        </div>
        <div class="volume">
          <span>&#x1F50A;</span>
          <input id="volume" type="range" min="0" max="1" step="0.1" value="1">
        </div>
      </div>
      <audio id="audio" preload="metadata"></audio>
    </section>
  </main>
  <script>
    const PROGRESS_SAVE_INTERVAL = __PROGRESS_INTERVAL__ * 1000;
    const booksGrid = document.getElementById('books-grid');
    const booksEmpty = document.getElementById('books-empty');
    const booksSortSelect = document.getElementById('books-sort');
    const libraryPanel = document.getElementById('library-panel');
    const uploadPanel = document.getElementById('upload-panel');
    const uploadForm = document.getElementById('upload-form');
    const uploadStatus = document.getElementById('upload-status');
    const uploadSubmit = document.getElementById('upload-submit');
    const playerPanel = document.getElementById('player-panel');
    const playerCover = document.getElementById('player-cover');
    const playerTitle = document.getElementById('player-title');
    const playerAuthor = document.getElementById('player-author');
    const transcriptBox = document.getElementById('transcript');
    const scrubber = document.getElementById('scrubber');
    const currentTimeLabel = document.getElementById('current-time');
    const totalTimeLabel = document.getElementById('total-time');
    const playToggle = document.getElementById('play-toggle');
    const volumeInput = document.getElementById('volume');
    const audio = document.getElementById('audio');

    let currentBook = null;
    let segments = [];
    let segmentNodes = [];
    let activeIndex = -1;
    let lastSavedAt = 0;
    let lastSavedTime = -1;

    function formatTime(seconds) {
      if (!Number.isFinite(seconds) || seconds < 0) {
        seconds = 0;
      }
      const total = Math.floor(seconds);
      const hours = Math.floor(total / 3600);
      const mins = Math.floor((total % 3600) / 60);
      const secs = total % 60;
      const padded = String(secs).padStart(2, '0');
      if (hours > 0) {
        return `${hours}:${String(mins).padStart(2, '0')}:${padded}`;
      }
      return `${mins}:${padded}`;
    }

    function setStatus(message, isError = false) {
      uploadStatus.textContent = message || '';
      uploadStatus.classList.toggle('error', Boolean(isError));
    }

    async function readError(res) {
      try {
        const data = await res.json();
        return data.detail || data.message || res.statusText;
      } catch (err) {
        return res.statusText;
      }
    }

    async function loadBooks() {
      const sort = booksSortSelect.value || 'recent';
      try {
        const res = await fetch(`/api/books?sort=${encodeURIComponent(sort)}`);
        if (!res.ok) {
          throw new Error(await readError(res));
        }
        const data = await res.json();
        renderBooks(Array.isArray(data) ? data : []);
      } catch (err) {
        console.error('Error fetching books:', err);
      }
    }

    function renderBooks(books) {
      booksGrid.innerHTML = '';
      booksEmpty.classList.toggle('hidden', books.length > 0);
      books.forEach((book) => {
        const tile = document.createElement('div');
        tile.className = 'book-tile';
        const img = document.createElement('img');
        img.src = book.coverUrl;
        img.alt = book.title;
        img.loading = 'lazy';
        const meta = document.createElement('div');
        meta.className = 'meta';
        const title = document.createElement('h3');
        title.textContent = book.title;
        const author = document.createElement('p');
        author.textContent = `${book.author} · ${book.durationLabel}`;
        meta.append(title, author);
        tile.append(img, meta);
        tile.addEventListener('click', () => openBook(book));
        booksGrid.appendChild(tile);
      });
    }

    function renderTranscript() {
      transcriptBox.innerHTML = '';
      segmentNodes = [];
      activeIndex = -1;
      if (!segments.length) {
        const empty = document.createElement('p');
        empty.className = 'empty';
        empty.textContent = 'No transcript available';
        transcriptBox.appendChild(empty);
        return;
      }
      segments.forEach((segment) => {
        const line = document.createElement('p');
        line.textContent = segment.text;
        line.addEventListener('click', () => {
          audio.currentTime = segment.startTime;
        });
        transcriptBox.appendChild(line);
        segmentNodes.push(line);
      });
    }

    function findSegmentIndex(time) {
      let lo = 0;
      let hi = segments.length - 1;
      let found = -1;
      while (lo <= hi) {
        const mid = (lo + hi) >> 1;
        if (segments[mid].startTime <= time) {
          found = mid;
          lo = mid + 1;
        } else {
          hi = mid - 1;
        }
      }
      if (found < 0) return -1;
      let first = found;
      while (first > 0 && segments[first - 1].startTime === segments[found].startTime) {
        first -= 1;
      }
      for (let i = first; i <= found; i += 1) {
        if (time <= segments[i].endTime) return i;
      }
      return -1;
    }

    function updateHighlight(time) {
      const index = findSegmentIndex(time);
      if (index === activeIndex) {
        return;
      }
      if (activeIndex >= 0 && segmentNodes[activeIndex]) {
        segmentNodes[activeIndex].classList.remove('active');
      }
      activeIndex = index;
      if (index >= 0 && segmentNodes[index]) {
        segmentNodes[index].classList.add('active');
        segmentNodes[index].scrollIntoView({ block: 'nearest', behavior: 'smooth' });
      }
    }

    async function saveProgress(force = false) {
      if (!currentBook) {
        return;
      }
      const time = audio.currentTime || 0;
      const now = Date.now();
      if (!force && now - lastSavedAt < PROGRESS_SAVE_INTERVAL) {
        return;
      }
      if (Math.abs(time - lastSavedTime) < 0.5) {
        return;
      }
      lastSavedAt = now;
      lastSavedTime = time;
      try {
        const res = await fetch(`/api/books/${currentBook.id}/progress`, {
          method: 'PATCH',
          headers: { 'Content-Type': 'application/json' },
          body: JSON.stringify({ progress: time }),
        });
        if (res.ok) {
          currentBook = await res.json();
        }
      } catch (err) {
        console.error('Error saving progress:', err);
      }
    }

    function openBook(book) {
      currentBook = book;
      segments = Array.isArray(book.transcript) ? book.transcript : [];
      lastSavedAt = 0;
      lastSavedTime = book.progress || 0;
      playerCover.src = book.coverUrl;
      playerCover.alt = book.title;
      playerTitle.textContent = book.title;
      playerAuthor.textContent = book.author;
      renderTranscript();
      scrubber.max = book.duration || 0;
      scrubber.value = book.progress || 0;
      totalTimeLabel.textContent = formatTime(book.duration);
      currentTimeLabel.textContent = formatTime(book.progress || 0);
      audio.src = book.audioUrl;
      audio.load();
      libraryPanel.classList.add('hidden');
      uploadPanel.classList.add('hidden');
      playerPanel.classList.remove('hidden');
    }

    async function closePlayer() {
      audio.pause();
      await saveProgress(true);
      audio.removeAttribute('src');
      audio.load();
      currentBook = null;
      playerPanel.classList.add('hidden');
      libraryPanel.classList.remove('hidden');
      uploadPanel.classList.remove('hidden');
      loadBooks();
    }

    audio.addEventListener('loadedmetadata', () => {
      if (Number.isFinite(audio.duration)) {
        scrubber.max = audio.duration;
        totalTimeLabel.textContent = formatTime(audio.duration);
      }
      if (currentBook && currentBook.progress > 0 && currentBook.progress < audio.duration) {
        audio.currentTime = currentBook.progress;
      }
    });
    audio.addEventListener('timeupdate', () => {
      const time = audio.currentTime || 0;
      scrubber.value = time;
      currentTimeLabel.textContent = formatTime(time);
      updateHighlight(time);
      if (!audio.paused) {
        saveProgress(false);
      }
    });
    audio.addEventListener('play', () => { playToggle.innerHTML = '&#x23F8;'; });
    audio.addEventListener('pause', () => {
      playToggle.innerHTML = '&#x25B6;';
      saveProgress(true);
    });
    audio.addEventListener('ended', () => {
      playToggle.innerHTML = '&#x25B6;';
      saveProgress(true);
    });

    playToggle.addEventListener('click', () => {
      if (audio.paused) {
        audio.play().catch((err) => console.error('Error playing:', err));
      } else {
        audio.pause();
      }
    });
    scrubber.addEventListener('input', () => {
      const time = parseFloat(scrubber.value);
      if (Number.isFinite(time)) {
        audio.currentTime = time;
        currentTimeLabel.textContent = formatTime(time);
      }
    });
    volumeInput.addEventListener('input', () => {
      const vol = parseFloat(volumeInput.value);
      if (Number.isFinite(vol)) {
        audio.volume = vol;
      }
    });
    function skipTime(seconds) {
      const limit = Number.isFinite(audio.duration) ? audio.duration : Infinity;
      audio.currentTime = Math.max(0, Math.min(limit, audio.currentTime + seconds));
    }
    document.getElementById('skip-back').addEventListener('click', () => skipTime(-30));
    document.getElementById('skip-forward').addEventListener('click', () => skipTime(30));
    document.getElementById('back-button').addEventListener('click', closePlayer);
    document.getElementById('delete-button').addEventListener('click', async () => {
      if (!currentBook || !window.confirm(`Delete "${currentBook.title}"?`)) {
        return;
      }
      const bookId = currentBook.id;
      audio.pause();
      currentBook = null;
      const res = await fetch(`/api/books/${bookId}`, { method: 'DELETE' });
      if (!res.ok) {
        window.alert(await readError(res));
      }
      await closePlayer();
    });
    booksSortSelect.addEventListener('change', loadBooks);

    uploadForm.addEventListener('submit', async (event) => {
      event.preventDefault();
      const formData = new FormData();
      formData.append('title', uploadForm.elements.title.value);
      formData.append('author', uploadForm.elements.author.value);
      formData.append('audio', uploadForm.elements.audio.files[0]);
      formData.append('cover', uploadForm.elements.cover.files[0]);
      const transcriptFile = uploadForm.elements.transcript.files[0];
      if (transcriptFile) {
        formData.append('transcript', transcriptFile);
      }
      uploadSubmit.disabled = true;
      setStatus('Uploading…');
      try {
        const res = await fetch('/api/books', { method: 'POST', body: formData });
        if (!res.ok) {
          throw new Error(await readError(res));
        }
        const book = await res.json();
        const count = (book.transcript || []).length;
        setStatus(count ? `Added "${book.title}" with ${count} transcript lines.` : `Added "${book.title}".`);
        uploadForm.reset();
        loadBooks();
      } catch (err) {
        setStatus(err.message || String(err), true);
      } finally {
        uploadSubmit.disabled = false;
      }
    });

    window.addEventListener('beforeunload', () => {
      if (currentBook && navigator.sendBeacon) {
        const blob = new Blob(
          [JSON.stringify({ progress: audio.currentTime || 0 })],
          { type: 'application/json' },
        );
        navigator.sendBeacon(`/api/books/${currentBook.id}/progress`, blob);
      }
    });

    loadBooks();
  </script>
</body>
</html>
"""


def _render_index(config: PlayerConfig) -> str:
    interval = config.progress_save_interval
    if not interval or interval <= 0:
        interval = 5.0
    return (
        INDEX_HTML.replace("__FAVICON__", AUDIOSHELF_FAVICON_URL)
        .replace("__TITLE__", config.title)
        .replace("__PROGRESS_INTERVAL__", f"{interval:g}")
    )


def _parse_progress(payload: object) -> float:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload.")
    value = payload.get("progress")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise HTTPException(status_code=400, detail="progress must be a number.")
    return float(value)


def create_app(config: PlayerConfig) -> FastAPI:
    root = config.root.expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)

    app = FastAPI(title="audioshelf")
    app.state.config = config
    app.state.root = root
    upload_settings = UploadSettings(
        max_upload_bytes=config.max_upload_bytes,
        ffprobe_path=config.ffprobe_path,
    )
    progress_lock = threading.Lock()
    index_html = _render_index(config)

    def _resolve_book(book_id: str) -> tuple[Path, BookRecord]:
        cleaned = (book_id or "").strip()
        if not cleaned or "/" in cleaned or "\\" in cleaned or cleaned in {".", ".."}:
            raise HTTPException(status_code=404, detail="Book not found")
        candidate = (root / cleaned).resolve()
        try:
            candidate.relative_to(root)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail="Book not found") from exc
        if not is_book_dir(candidate):
            raise HTTPException(status_code=404, detail="Book not found")
        record = load_book_record(candidate)
        if record is None:
            raise HTTPException(status_code=404, detail="Book not found")
        return candidate, record

    def _book_file(book_dir: Path, name: str, label: str) -> Path:
        path = (book_dir / name).resolve()
        try:
            path.relative_to(book_dir)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=f"{label} not found") from exc
        if not path.is_file():
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return path

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return index_html

    @app.get("/api")
    def api_root() -> JSONResponse:
        return JSONResponse({"message": "Audiobook API Server"})

    @app.get("/api/books")
    def api_books(
        sort: str | None = Query(
            None, description="Sort order: recent, author or played"
        ),
    ) -> JSONResponse:
        sort_mode = _normalize_sort_mode(sort)
        books = [book_payload(record) for record in list_books_sorted(root, sort_mode)]
        return JSONResponse(books)

    @app.post("/api/books")
    async def api_upload_book(
        title: str | None = Form(None),
        author: str | None = Form(None),
        audio: UploadFile | None = File(None),
        cover: UploadFile | None = File(None),
        transcript: UploadFile | None = File(None),
        transcript_text: str | None = Form(
            None, description="Transcript source pasted as plain text."
        ),
    ) -> JSONResponse:
        try:
            record = await ingest_book(
                root,
                title=title,
                author=author,
                audio=audio,
                cover=cover,
                transcript=transcript,
                transcript_text=transcript_text,
                settings=upload_settings,
            )
        except UploadError as exc:
            logger.info("Upload rejected: %s", exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except OSError as exc:
            logger.exception("Failed to save upload")
            raise HTTPException(
                status_code=500, detail=f"Failed to save upload: {exc}"
            ) from exc
        return JSONResponse(book_payload(record), status_code=201)

    @app.get("/api/books/{book_id}")
    def api_book(book_id: str) -> JSONResponse:
        _, record = _resolve_book(book_id)
        return JSONResponse(book_payload(record))

    @app.delete("/api/books/{book_id}")
    def api_delete_book(book_id: str) -> JSONResponse:
        book_dir, _ = _resolve_book(book_id)
        with progress_lock:
            try:
                delete_book(book_dir)
            except FileNotFoundError as exc:
                raise HTTPException(status_code=404, detail="Book not found") from exc
            except OSError as exc:
                raise HTTPException(
                    status_code=500, detail=f"Failed to delete book: {exc}"
                ) from exc
        logger.info("Deleted book %s", book_dir.name)
        return JSONResponse({"deleted": True, "book": book_dir.name})

    @app.get("/api/books/{book_id}/transcript")
    def api_transcript(book_id: str) -> JSONResponse:
        _, record = _resolve_book(book_id)
        return JSONResponse({"segments": segments_to_payload(record.transcript)})

    @app.get("/api/books/{book_id}/transcript/at")
    def api_transcript_at(
        book_id: str,
        time: float = Query(..., description="Playback position in seconds."),
    ) -> JSONResponse:
        _, record = _resolve_book(book_id)
        index = find_segment_index(record.transcript, time)
        segment = record.transcript[index].as_payload() if index is not None else None
        return JSONResponse({"index": index, "segment": segment})

    @app.patch("/api/books/{book_id}/progress")
    @app.post("/api/books/{book_id}/progress")
    def api_progress(
        book_id: str,
        payload: dict[str, object] = Body(...),
    ) -> JSONResponse:
        progress = _parse_progress(payload)
        book_dir, _ = _resolve_book(book_id)
        with progress_lock:
            try:
                record = update_progress(book_dir, progress)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            except FileNotFoundError as exc:
                raise HTTPException(status_code=404, detail="Book not found") from exc
        return JSONResponse(book_payload(record))

    @app.get("/api/books/{book_id}/audio")
    def api_audio(book_id: str) -> FileResponse:
        book_dir, record = _resolve_book(book_id)
        return FileResponse(_book_file(book_dir, record.audio, "Audio"))

    @app.get("/api/books/{book_id}/cover")
    def api_cover(book_id: str) -> FileResponse:
        book_dir, record = _resolve_book(book_id)
        return FileResponse(_book_file(book_dir, record.cover, "Cover"))

    return app


__all__ = ["INDEX_HTML", "PlayerConfig", "create_app"]
