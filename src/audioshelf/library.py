from __future__ import annotations

import json
import logging
import math
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image

from .audio import format_duration
from .transcript import TranscriptSegment, segments_from_payload, segments_to_payload

logger = logging.getLogger(__name__)

BOOK_RECORD_FILENAME = ".audioshelf-book.json"
BOOK_RECORD_VERSION = 1
SORT_MODES = ("recent", "author", "played")


@dataclass
class BookRecord:
    id: str
    title: str
    author: str
    cover: str
    audio: str
    duration: float = 0.0
    transcript: list[TranscriptSegment] = field(default_factory=list)
    progress: float = 0.0
    progress_updated_at: float | None = None
    created_at: float = field(default_factory=time.time)
    original_audio_name: str | None = None
    original_cover_name: str | None = None

    def to_record(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "version": BOOK_RECORD_VERSION,
            "title": self.title,
            "author": self.author,
            "cover": self.cover,
            "audio": self.audio,
            "duration": self.duration,
            "transcript": segments_to_payload(self.transcript),
            "progress": self.progress,
            "progress_updated_at": self.progress_updated_at,
            "created_at": self.created_at,
        }
        if self.original_audio_name:
            payload["original_audio_name"] = self.original_audio_name
        if self.original_cover_name:
            payload["original_cover_name"] = self.original_cover_name
        return payload

    @classmethod
    def from_record(cls, book_id: str, payload: object) -> "BookRecord | None":
        if not isinstance(payload, dict):
            return None
        title = payload.get("title")
        author = payload.get("author")
        cover = payload.get("cover")
        audio = payload.get("audio")
        if not all(isinstance(value, str) for value in (title, author, cover, audio)):
            return None
        return cls(
            id=book_id,
            title=title,
            author=author,
            cover=cover,
            audio=audio,
            duration=_number_or(payload.get("duration"), 0.0),
            transcript=segments_from_payload(payload.get("transcript")),
            progress=_number_or(payload.get("progress"), 0.0),
            progress_updated_at=_number_or(payload.get("progress_updated_at"), None),
            created_at=_number_or(payload.get("created_at"), 0.0),
            original_audio_name=_string_or_none(payload.get("original_audio_name")),
            original_cover_name=_string_or_none(payload.get("original_cover_name")),
        )


def _number_or(value: object, fallback: float | None) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value):
        return fallback
    return float(value)


def _string_or_none(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def book_record_path(book_dir: Path) -> Path:
    return book_dir / BOOK_RECORD_FILENAME


def is_book_dir(path: Path) -> bool:
    return path.is_dir() and book_record_path(path).is_file()


def load_book_record(book_dir: Path) -> BookRecord | None:
    path = book_record_path(book_dir)
    if not path.exists():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.warning("Ignoring unreadable book record: %s", path)
        return None
    return BookRecord.from_record(book_dir.name, payload)


def write_book_record(book_dir: Path, record: BookRecord) -> Path:
    book_dir.mkdir(parents=True, exist_ok=True)
    path = book_record_path(book_dir)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(
        json.dumps(record.to_record(), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    tmp_path.replace(path)
    return path


def update_progress(book_dir: Path, seconds: float) -> BookRecord:
    """Persist the playback position of a book and return the updated record."""
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise ValueError("Progress must be a number of seconds.")
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError("Progress must be a non-negative number of seconds.")
    record = load_book_record(book_dir)
    if record is None:
        raise FileNotFoundError(f"Book not found: {book_dir}")
    value = float(seconds)
    if record.duration > 0:
        value = min(value, record.duration)
    record.progress = value
    record.progress_updated_at = time.time()
    write_book_record(book_dir, record)
    return record


def delete_book(book_dir: Path) -> None:
    if not is_book_dir(book_dir):
        raise FileNotFoundError(f"Book not found: {book_dir}")
    shutil.rmtree(book_dir)


def list_books_sorted(root: Path, mode: str = "recent") -> list[BookRecord]:
    normalized_mode = (mode or "").lower().strip()
    if normalized_mode not in SORT_MODES:
        normalized_mode = "recent"
    entries: list[tuple[tuple[object, ...], BookRecord]] = []
    try:
        children = list(root.iterdir())
    except OSError:
        return []
    for entry in children:
        if not entry.is_dir():
            continue
        record = load_book_record(entry)
        if record is None:
            continue
        normalized_author = record.author.strip().casefold()
        normalized_title = record.title.strip().casefold()
        if normalized_mode == "author":
            sort_key: tuple[object, ...] = (
                0 if normalized_author else 1,
                normalized_author,
                normalized_title,
                entry.name.casefold(),
            )
        elif normalized_mode == "played":
            last_played = record.progress_updated_at or 0.0
            has_played = last_played > 0
            sort_key = (
                0 if has_played else 1,
                -last_played if has_played else 0,
                -record.created_at,
                normalized_title,
                entry.name.casefold(),
            )
        else:
            sort_key = (
                -record.created_at,
                normalized_title,
                entry.name.casefold(),
            )
        entries.append((sort_key, record))
    entries.sort(key=lambda item: item[0])
    return [record for _, record in entries]


def book_payload(record: BookRecord) -> dict[str, object]:
    """API representation of a stored book."""
    return {
        "id": record.id,
        "title": record.title,
        "author": record.author,
        "coverUrl": f"/api/books/{record.id}/cover",
        "audioUrl": f"/api/books/{record.id}/audio",
        "duration": record.duration,
        "durationLabel": format_duration(record.duration),
        "transcript": segments_to_payload(record.transcript),
        "progress": record.progress,
        "progressUpdatedAt": record.progress_updated_at,
        "createdAt": record.created_at,
    }


def ensure_cover_is_square(cover_path: Path) -> None:
    try:
        with Image.open(cover_path) as img:
            img = img.convert("RGB")
            width, height = img.size
            if width == height or width == 0 or height == 0:
                return
            size = max(width, height)
            dominant = (
                img.resize((1, 1), resample=Image.Resampling.LANCZOS)
                .convert("RGB")
                .getpixel((0, 0))
            )
            canvas = Image.new("RGB", (size, size), dominant)
            offset = ((size - width) // 2, (size - height) // 2)
            canvas.paste(img, offset)
            save_kwargs = (
                {"quality": 92}
                if cover_path.suffix.lower() in {".jpg", ".jpeg"}
                else {}
            )
            canvas.save(cover_path, format=_pillow_format(cover_path), **save_kwargs)
    except Exception:  # pragma: no cover - best effort padding
        logger.debug("Cover padding skipped for %s", cover_path, exc_info=True)
        return


def _pillow_format(cover_path: Path) -> str | None:
    suffix = cover_path.suffix.lower()
    if suffix in {".jpg", ".jpeg"}:
        return "JPEG"
    if suffix == ".png":
        return "PNG"
    if suffix == ".webp":
        return "WEBP"
    return None


__all__ = [
    "BOOK_RECORD_FILENAME",
    "BookRecord",
    "SORT_MODES",
    "book_payload",
    "book_record_path",
    "delete_book",
    "ensure_cover_is_square",
    "is_book_dir",
    "list_books_sorted",
    "load_book_record",
    "update_progress",
    "write_book_record",
]
