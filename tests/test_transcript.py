from __future__ import annotations

import pytest

from audioshelf.transcript import (
    SENTENCE_PAUSE_SECONDS,
    TranscriptSegment,
    estimate_transcript,
    find_segment_index,
    normalize_whitespace,
    segments_from_payload,
    split_sentences,
    weighted_length,
)


def test_two_sentences_share_duration_with_pause() -> None:
    segments = estimate_transcript("Hello world. This is a test!", 10)

    assert [segment.text for segment in segments] == ["Hello world.", "This is a test!"]
    first, second = segments
    assert first.start_time == 0.0
    assert first.end_time == pytest.approx(4.40)
    assert second.start_time - first.end_time == pytest.approx(SENTENCE_PAUSE_SECONDS)
    assert second.end_time == pytest.approx(10.0, abs=0.01)


def test_single_sentence_spans_whole_duration() -> None:
    segments = estimate_transcript("One.", 5)

    assert segments == [TranscriptSegment(text="One.", start_time=0.0, end_time=5.0)]


@pytest.mark.parametrize("text", ["", "   \n\n  ", "no terminator here", "trailing, words; only"])
def test_text_without_sentences_yields_nothing(text: str) -> None:
    assert estimate_transcript(text, 30) == []


def test_whitespace_is_collapsed_before_splitting() -> None:
    text = "  Line one\nstill one.\n\n\tTwo!  "

    assert normalize_whitespace(text) == "Line one still one. Two!"
    segments = estimate_transcript(text, 8)
    assert [segment.text for segment in segments] == ["Line one still one.", "Two!"]


def test_terminator_runs_stay_with_their_sentence() -> None:
    assert split_sentences("Wait?! Really... Yes.") == ["Wait?!", "Really...", "Yes."]


def test_trailing_unterminated_text_is_dropped() -> None:
    segments = estimate_transcript("Done. trailing words", 4)

    assert [segment.text for segment in segments] == ["Done."]
    assert segments[0].end_time == pytest.approx(4.0)


def test_abbreviations_are_not_special_cased() -> None:
    assert split_sentences("Mr. Smith left.") == ["Mr.", "Smith left."]


def test_weighted_length_counts_character_classes() -> None:
    assert weighted_length("a b,") == pytest.approx(4.5)
    assert weighted_length("Hello world.") == pytest.approx(12.5)
    assert weighted_length("Hi; ok?") == pytest.approx(8.5)


def test_segments_are_ordered_and_end_near_duration() -> None:
    text = (
        "It was a bright cold day in April. The clocks were striking thirteen! "
        "Winston slipped quickly through the glass doors? Not quickly enough; "
        "a swirl of gritty dust entered along with him."
    )
    duration = 93.7
    segments = estimate_transcript(text, duration)

    assert len(segments) == 4
    for segment in segments:
        assert 0 <= segment.start_time <= segment.end_time
    for previous, current in zip(segments, segments[1:]):
        assert current.start_time >= previous.end_time
        assert current.start_time - previous.end_time == pytest.approx(
            SENTENCE_PAUSE_SECONDS, abs=0.011
        )
    assert segments[-1].end_time == pytest.approx(duration, abs=0.01 * len(segments))


def test_estimate_is_deterministic() -> None:
    text = "First sentence here. Second one! And a third?"

    assert estimate_transcript(text, 12.34) == estimate_transcript(text, 12.34)


def test_timestamps_are_rounded_to_hundredths() -> None:
    for segment in estimate_transcript("Alpha beta gamma. Delta! Epsilon zeta?", 7.777):
        assert segment.start_time == round(segment.start_time, 2)
        assert segment.end_time == round(segment.end_time, 2)


@pytest.mark.parametrize("duration", [0, -3.0, float("nan"), float("inf")])
def test_unusable_duration_collapses_timestamps(duration: float) -> None:
    segments = estimate_transcript("One. Two.", duration)

    assert [segment.text for segment in segments] == ["One.", "Two."]
    assert all(segment.start_time == segment.end_time == 0.0 for segment in segments)


def test_pauses_longer_than_audio_give_zero_length_segments() -> None:
    segments = estimate_transcript("A. B. C.", 0.5)

    assert [(s.start_time, s.end_time) for s in segments] == [
        (0.0, 0.0),
        (0.5, 0.5),
        (1.0, 1.0),
    ]


def test_find_segment_index_uses_segment_ranges() -> None:
    segments = estimate_transcript("Hello world. This is a test!", 10)

    assert find_segment_index(segments, 0.0) == 0
    assert find_segment_index(segments, 2.0) == 0
    assert find_segment_index(segments, 4.6) is None
    assert find_segment_index(segments, 4.9) == 1
    assert find_segment_index(segments, 10.0) == 1
    assert find_segment_index(segments, 10.5) is None
    assert find_segment_index(segments, -1.0) is None
    assert find_segment_index([], 1.0) is None


def test_find_segment_index_prefers_first_of_collapsed_segments() -> None:
    segments = estimate_transcript("One. Two. Three.", 0)

    assert find_segment_index(segments, 0.0) == 0


def test_find_segment_index_skips_ended_segment_with_same_start() -> None:
    segments = [
        TranscriptSegment("A.", 0.0, 0.0),
        TranscriptSegment("Longer sentence.", 0.0, 3.0),
    ]

    assert find_segment_index(segments, 0.0) == 0
    assert find_segment_index(segments, 1.5) == 1


def test_payload_round_trip_skips_malformed_entries() -> None:
    payload = [
        {"text": "Kept.", "startTime": 0, "endTime": 1.5},
        {"text": "No times."},
        {"text": "Bool start.", "startTime": True, "endTime": 2},
        "not a mapping",
    ]

    assert segments_from_payload(payload) == [
        TranscriptSegment(text="Kept.", start_time=0.0, end_time=1.5)
    ]
    assert segments_from_payload(None) == []
