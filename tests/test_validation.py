from datetime import UTC, datetime, timedelta

import pytest

from jobcore.config.settings import Settings
from jobcore.v1.meetings.models import Meeting, ProcessingDecision
from jobcore.v1.meetings.validation import (
    calculate_actual_duration,
    count_transcript_words,
    record_processing_decision,
    validate_for_processing,
)

VTT = """WEBVTT

0f8fad5b-d9cb-469f-a165-70867728950e
00:00:01.000 --> 00:00:04.500
<v Alice Smith>Good morning everyone, let's get started.</v>

2
00:00:05.000 --> 00:00:07.000
<v Bob Jones>Morning!</v>
"""


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, min_meeting_duration_s=120, min_transcript_words=25)


class TestWordCount:
    def test_counts_spoken_words_only(self):
        assert count_transcript_words(VTT) == 7

    @pytest.mark.parametrize("transcript", [None, "", "   \n"])
    def test_empty_transcripts(self, transcript):
        assert count_transcript_words(transcript) == 0

    def test_plain_text(self):
        assert count_transcript_words("just some words here") == 4


class TestDuration:
    def test_whole_seconds(self):
        start = datetime(2026, 1, 5, 10, 0, tzinfo=UTC)
        assert calculate_actual_duration(start, start + timedelta(minutes=3, seconds=2.7)) == 182

    def test_missing_bounds(self):
        assert calculate_actual_duration(None, datetime.now(UTC)) is None

    def test_never_negative(self):
        start = datetime(2026, 1, 5, 10, 0, tzinfo=UTC)
        assert calculate_actual_duration(start, start - timedelta(seconds=5)) == 0


class TestValidateForProcessing:
    def test_no_transcript_is_checked_first(self, settings):
        result = validate_for_processing(settings, 30, None, has_transcript=False)

        assert result.decision is ProcessingDecision.SKIPPED_NO_TRANSCRIPT
        assert not result.should_process

    def test_short_meeting(self, settings):
        result = validate_for_processing(settings, 90, 500, has_transcript=True)

        assert result.decision is ProcessingDecision.SKIPPED_DURATION
        assert "1m 30s" in result.reason

    def test_thin_transcript(self, settings):
        result = validate_for_processing(settings, 600, 10, has_transcript=True)

        assert result.decision is ProcessingDecision.SKIPPED_CONTENT
        assert "10 words" in result.reason

    def test_unknown_duration_is_not_held_against_the_meeting(self, settings):
        result = validate_for_processing(settings, None, 100, has_transcript=True)

        assert result.should_process
        assert "Duration: unknown" in result.reason

    def test_passing_meeting(self, settings):
        result = validate_for_processing(settings, 1800, 4000, has_transcript=True)

        assert result.decision is ProcessingDecision.PROCESSED
        assert "Duration: 30m" in result.reason


def test_record_processing_decision(settings):
    meeting = Meeting(title="Standup")
    now = datetime(2026, 1, 5, 10, 30, tzinfo=UTC)
    result = validate_for_processing(settings, 900, 300, has_transcript=True)

    record_processing_decision(meeting, result, now)

    assert meeting.processing_decision == "processed"
    assert meeting.processing_decision_at == now
    assert meeting.actual_duration_seconds == 900
    assert meeting.transcript_word_count == 300
