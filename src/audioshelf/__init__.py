from .audio import FFprobeError, format_duration, probe_duration, read_duration
from .library import BookRecord, list_books_sorted, load_book_record, update_progress
from .player import PlayerConfig, create_app
from .transcript import (
    SENTENCE_PAUSE_SECONDS,
    TranscriptSegment,
    estimate_transcript,
    find_segment_index,
)
from .uploads import (
    UploadError,
    UploadTooLargeError,
    UploadValidationError,
    ingest_book,
)

__all__ = [
    "BookRecord",
    "FFprobeError",
    "PlayerConfig",
    "SENTENCE_PAUSE_SECONDS",
    "TranscriptSegment",
    "UploadError",
    "UploadTooLargeError",
    "UploadValidationError",
    "create_app",
    "estimate_transcript",
    "find_segment_index",
    "format_duration",
    "ingest_book",
    "list_books_sorted",
    "load_book_record",
    "probe_duration",
    "read_duration",
    "update_progress",
]
