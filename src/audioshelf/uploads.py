from __future__ import annotations

import asyncio
import codecs
import logging
import random
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from fastapi import UploadFile

from .audio import probe_duration
from .library import BookRecord, ensure_cover_is_square, write_book_record
from .transcript import TranscriptSegment, estimate_transcript

logger = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 500 * 1024 * 1024
UPLOAD_CHUNK_SIZE = 1024 * 1024
_INVALID_NAME_CHARS = set('<>:"/\\|?*')


class UploadError(ValueError):
    """Base class for rejected uploads."""


class UploadValidationError(UploadError):
    """Raised when required fields are missing or a file has the wrong type."""


class UploadTooLargeError(UploadError):
    """Raised when an uploaded file exceeds the configured size limit."""


@dataclass
class UploadSettings:
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    ffprobe_path: str = "ffprobe"


def _size_label(max_bytes: int) -> str:
    megabytes = max_bytes / (1024 * 1024)
    if megabytes >= 1:
        return f"{megabytes:g}MB"
    return f"{max_bytes} bytes"


def sanitize_original_name(filename: str | None, fallback: str = "upload") -> str:
    candidate = Path(filename).name.strip() if isinstance(filename, str) else ""
    cleaned_chars: list[str] = []
    for ch in candidate:
        if ch in _INVALID_NAME_CHARS or ch.isspace():
            cleaned_chars.append("_")
        elif ord(ch) < 32:
            continue
        else:
            cleaned_chars.append(ch)
    cleaned = "".join(cleaned_chars).strip(" .")
    if not cleaned:
        cleaned = fallback
    return cleaned[-120:]


def generate_stored_name(filename: str | None, fallback: str = "upload") -> str:
    unique_suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return f"{unique_suffix}-{sanitize_original_name(filename, fallback)}"


def _content_type(upload: UploadFile | None) -> str:
    if upload is None:
        return ""
    return (upload.content_type or "").split(";", 1)[0].strip().lower()


def _is_present(upload: UploadFile | None) -> bool:
    return upload is not None and bool(upload.filename)


def validate_book_upload(
    title: str | None,
    author: str | None,
    audio: UploadFile | None,
    cover: UploadFile | None,
    transcript: UploadFile | None = None,
) -> tuple[str, str]:
    """Check required fields and MIME types; return the cleaned title and author."""
    if not _is_present(audio) or not _is_present(cover):
        raise UploadValidationError("Both audio and cover files are required")
    clean_title = (title or "").strip()
    clean_author = (author or "").strip()
    if not clean_title or not clean_author:
        raise UploadValidationError("Title and author are required")
    if not _content_type(audio).startswith("audio/"):
        raise UploadValidationError(
            "Invalid audio file type. Only audio files are allowed."
        )
    if not _content_type(cover).startswith("image/"):
        raise UploadValidationError(
            "Invalid image file type. Only image files are allowed."
        )
    if _is_present(transcript):
        name = (transcript.filename or "").lower()
        if not (_content_type(transcript).startswith("text/") or name.endswith(".txt")):
            raise UploadValidationError(
                "Invalid transcript file type. Only plain text files are allowed."
            )
    return clean_title, clean_author


async def save_upload_file(
    upload: UploadFile,
    destination: Path,
    *,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> int:
    loop = asyncio.get_running_loop()
    written = 0
    handle = await loop.run_in_executor(None, destination.open, "wb")
    try:
        while True:
            chunk = await upload.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise UploadTooLargeError(
                    f"File is too large. Maximum size is {_size_label(max_bytes)}"
                )
            await loop.run_in_executor(None, handle.write, chunk)
    except UploadTooLargeError:
        handle.close()
        destination.unlink(missing_ok=True)
        raise
    finally:
        handle.close()
        await upload.close()
    return written


async def read_upload_bytes(
    upload: UploadFile,
    *,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> bytes:
    chunks: list[bytes] = []
    total = 0
    try:
        while True:
            chunk = await upload.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > max_bytes:
                raise UploadTooLargeError(
                    f"File is too large. Maximum size is {_size_label(max_bytes)}"
                )
            chunks.append(chunk)
    finally:
        await upload.close()
    return b"".join(chunks)


def decode_transcript_bytes(data: bytes) -> str:
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        try:
            return data.decode("utf-16")
        except UnicodeDecodeError:
            pass
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("utf-8", errors="replace")


def build_transcript(
    text: str | None,
    duration: float,
    *,
    label: str = "",
) -> list[TranscriptSegment]:
    """Time the transcript text against the probed duration, or skip it."""
    if not text or not text.strip():
        return []
    if duration <= 0:
        logger.warning(
            "Skipping transcript for %s: audio duration unavailable", label or "upload"
        )
        return []
    segments = estimate_transcript(text, duration)
    if not segments:
        logger.info(
            "Transcript for %s has no complete sentences; nothing to time",
            label or "upload",
        )
    return segments


async def ingest_book(
    root: Path,
    *,
    title: str | None,
    author: str | None,
    audio: UploadFile | None,
    cover: UploadFile | None,
    transcript: UploadFile | None = None,
    transcript_text: str | None = None,
    settings: UploadSettings | None = None,
) -> BookRecord:
    """
    Store an uploaded book under ``root`` and return its saved record.

    The audio and cover are written into a fresh book directory, the audio is
    probed for its duration, and the optional transcript source is timed
    against that duration before the record is written.
    """
    settings = settings or UploadSettings()
    clean_title, clean_author = validate_book_upload(
        title, author, audio, cover, transcript
    )
    book_id = uuid4().hex
    book_dir = root / book_id
    book_dir.mkdir(parents=True, exist_ok=False)
    logger.info("Uploading book %r (%s) into %s", clean_title, book_id, book_dir)
    loop = asyncio.get_running_loop()
    try:
        audio_name = generate_stored_name(audio.filename, "audio")
        cover_name = generate_stored_name(cover.filename, "cover")
        logger.info("Uploading file: %s Type: %s", audio.filename, audio.content_type)
        await save_upload_file(
            audio, book_dir / audio_name, max_bytes=settings.max_upload_bytes
        )
        logger.info("Uploading file: %s Type: %s", cover.filename, cover.content_type)
        await save_upload_file(
            cover, book_dir / cover_name, max_bytes=settings.max_upload_bytes
        )

        source_text = transcript_text
        if _is_present(transcript):
            raw = await read_upload_bytes(
                transcript, max_bytes=settings.max_upload_bytes
            )
            decoded = decode_transcript_bytes(raw)
            if decoded.strip():
                source_text = decoded
            else:
                logger.info(
                    "Ignoring empty transcript file %s for %s",
                    transcript.filename,
                    clean_title,
                )

        def _finalize_media() -> float:
            ensure_cover_is_square(book_dir / cover_name)
            return probe_duration(
                book_dir / audio_name, ffprobe_path=settings.ffprobe_path
            )

        duration = await loop.run_in_executor(None, _finalize_media)
        segments = build_transcript(source_text, duration, label=clean_title)

        record = BookRecord(
            id=book_id,
            title=clean_title,
            author=clean_author,
            cover=cover_name,
            audio=audio_name,
            duration=duration,
            transcript=segments,
            original_audio_name=audio.filename,
            original_cover_name=cover.filename,
        )
        await loop.run_in_executor(None, write_book_record, book_dir, record)
    except BaseException:
        shutil.rmtree(book_dir, ignore_errors=True)
        raise
    logger.info(
        "Saved book %s: %.2fs audio, %d transcript segments",
        book_id,
        record.duration,
        len(record.transcript),
    )
    return record


__all__ = [
    "DEFAULT_MAX_UPLOAD_BYTES",
    "UploadError",
    "UploadSettings",
    "UploadTooLargeError",
    "UploadValidationError",
    "build_transcript",
    "decode_transcript_bytes",
    "generate_stored_name",
    "ingest_book",
    "read_upload_bytes",
    "sanitize_original_name",
    "save_upload_file",
    "validate_book_upload",
]
