from __future__ import annotations

import math
import re
from bisect import bisect_right
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

SENTENCE_PAUSE_SECONDS = 0.5
TIMESTAMP_PRECISION = 2
_PUNCTUATION_WEIGHT = 2.0
_WHITESPACE_WEIGHT = 0.5
_DEFAULT_WEIGHT = 1.0
_WEIGHTED_PUNCTUATION = frozenset(".!?,;")
_NEWLINE_RUN_RE = re.compile(r"\n+")
_WHITESPACE_RUN_RE = re.compile(r"\s+")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")


@dataclass(frozen=True, slots=True)
class TranscriptSegment:
    text: str
    start_time: float
    end_time: float

    def as_payload(self) -> dict[str, object]:
        return {
            "text": self.text,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }

    @classmethod
    def from_payload(cls, payload: object) -> "TranscriptSegment | None":
        if not isinstance(payload, Mapping):
            return None
        text = payload.get("text")
        start = payload.get("startTime")
        end = payload.get("endTime")
        if not isinstance(text, str):
            return None
        if isinstance(start, bool) or not isinstance(start, (int, float)):
            return None
        if isinstance(end, bool) or not isinstance(end, (int, float)):
            return None
        return cls(text=text, start_time=float(start), end_time=float(end))


def normalize_whitespace(text: str) -> str:
    collapsed = _NEWLINE_RUN_RE.sub(" ", text)
    collapsed = _WHITESPACE_RUN_RE.sub(" ", collapsed)
    return collapsed.strip()


def split_sentences(text: str) -> list[str]:
    """
    Split normalized text into sentence units ending in ``.``, ``!`` or ``?``.

    Abbreviations are not special-cased and a trailing fragment without a
    terminator is dropped.
    """
    sentences: list[str] = []
    for match in _SENTENCE_RE.finditer(text):
        sentence = match.group(0).strip()
        if sentence:
            sentences.append(sentence)
    return sentences


def weighted_length(sentence: str) -> float:
    total = 0.0
    for ch in sentence:
        if ch in _WEIGHTED_PUNCTUATION:
            total += _PUNCTUATION_WEIGHT
        elif ch.isspace():
            total += _WHITESPACE_WEIGHT
        else:
            total += _DEFAULT_WEIGHT
    return total


def _round_time(value: float) -> float:
    return round(value, TIMESTAMP_PRECISION)


def estimate_transcript(text: str, duration: float) -> list[TranscriptSegment]:
    """
    Spread ``duration`` seconds over the sentences of ``text``.

    Each sentence gets a share of the audio proportional to its weighted
    length, with a fixed pause between consecutive sentences. Text without a
    sentence terminator yields no segments. A non-positive or non-finite
    duration keeps the sentences but collapses every timestamp to zero.
    """
    sentences = split_sentences(normalize_whitespace(text or ""))
    if not sentences:
        return []
    weights = [weighted_length(sentence) for sentence in sentences]
    total_weight = sum(weights)
    if total_weight <= 0:
        return []
    if not math.isfinite(duration) or duration <= 0:
        return [
            TranscriptSegment(text=sentence, start_time=0.0, end_time=0.0)
            for sentence in sentences
        ]

    total_pause = SENTENCE_PAUSE_SECONDS * (len(sentences) - 1)
    available_duration = duration - total_pause
    # more pause than audio: sentences collapse onto their pause offsets
    time_per_unit = max(0.0, available_duration / total_weight)

    segments: list[TranscriptSegment] = []
    clock = 0.0
    last_index = len(sentences) - 1
    for index, (sentence, weight) in enumerate(zip(sentences, weights)):
        sentence_duration = weight * time_per_unit
        start = clock
        end = start + sentence_duration
        segments.append(
            TranscriptSegment(
                text=sentence,
                start_time=_round_time(start),
                end_time=_round_time(end),
            )
        )
        clock += sentence_duration
        if index < last_index:
            clock += SENTENCE_PAUSE_SECONDS
    return segments


def find_segment_index(segments: Sequence[TranscriptSegment], time_value: float) -> int | None:
    """Return the index of the segment playing at ``time_value``, if any."""
    if not segments or not math.isfinite(time_value):
        return None
    starts = [segment.start_time for segment in segments]
    position = bisect_right(starts, time_value) - 1
    if position < 0:
        return None
    # segments sharing a start: prefer the earliest one still covering time_value
    first = position
    while first > 0 and starts[first - 1] == starts[position]:
        first -= 1
    for index in range(first, position + 1):
        if time_value <= segments[index].end_time:
            return index
    return None


def segments_to_payload(segments: Iterable[TranscriptSegment]) -> list[dict[str, object]]:
    return [segment.as_payload() for segment in segments]


def segments_from_payload(payload: object) -> list[TranscriptSegment]:
    if not isinstance(payload, list):
        return []
    segments: list[TranscriptSegment] = []
    for entry in payload:
        segment = TranscriptSegment.from_payload(entry)
        if segment is not None:
            segments.append(segment)
    return segments


__all__ = [
    "SENTENCE_PAUSE_SECONDS",
    "TIMESTAMP_PRECISION",
    "TranscriptSegment",
    "estimate_transcript",
    "find_segment_index",
    "normalize_whitespace",
    "segments_from_payload",
    "segments_to_payload",
    "split_sentences",
    "weighted_length",
]
