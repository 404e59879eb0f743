"""
Gate that decides whether a meeting is worth generating minutes for.

Accidental open/close sessions and near-empty transcripts are skipped, and
the decision is stored on the meeting with a human-readable reason.
"""

import re
from dataclasses import dataclass
from datetime import datetime

from jobcore.config.settings import Settings
from jobcore.v1.meetings.models import Meeting, ProcessingDecision

_VTT_HEADER = re.compile(r"^WEBVTT[\s\S]*?\n\n", re.IGNORECASE)
_VTT_TIMESTAMP = re.compile(r"\d{2}:\d{2}:\d{2}\.\d{3}\s*-->\s*\d{2}:\d{2}:\d{2}\.\d{3}")
_VTT_VOICE_OPEN = re.compile(r"^<v\s+[^>]+>", re.MULTILINE)
_VTT_VOICE_CLOSE = re.compile(r"</v>")
_VTT_UUID_CUE = re.compile(r"^[a-f0-9-]{36}$", re.MULTILINE | re.IGNORECASE)
_VTT_NUMERIC_CUE = re.compile(r"^\d+$", re.MULTILINE)


def count_transcript_words(transcript: str | None) -> int:
    """Count spoken words, ignoring WebVTT headers, timings, voice tags and cue ids."""
    if not transcript or not transcript.strip():
        return 0

    cleaned = _VTT_HEADER.sub("", transcript)
    cleaned = _VTT_TIMESTAMP.sub("", cleaned)
    cleaned = _VTT_VOICE_OPEN.sub("", cleaned)
    cleaned = _VTT_VOICE_CLOSE.sub("", cleaned)
    cleaned = _VTT_UUID_CUE.sub("", cleaned)
    cleaned = _VTT_NUMERIC_CUE.sub("", cleaned)
    return len(cleaned.split())


def calculate_actual_duration(
    start_time: datetime | None, end_time: datetime | None
) -> int | None:
    """Whole seconds between call start and end, never negative."""
    if start_time is None or end_time is None:
        return None
    return max(0, int((end_time - start_time).total_seconds()))


@dataclass(frozen=True)
class ValidationResult:
    decision: ProcessingDecision
    reason: str
    actual_duration_seconds: int | None = None
    transcript_word_count: int | None = None

    @property
    def should_process(self) -> bool:
        return self.decision is ProcessingDecision.PROCESSED


def validate_for_processing(
    settings: Settings,
    actual_duration_seconds: int | None,
    transcript_word_count: int | None,
    has_transcript: bool,
) -> ValidationResult:
    if not has_transcript:
        return ValidationResult(
            decision=ProcessingDecision.SKIPPED_NO_TRANSCRIPT,
            reason=(
                "No transcript available. Transcription must be enabled during "
                "the meeting for AI minutes generation."
            ),
            actual_duration_seconds=actual_duration_seconds,
            transcript_word_count=0,
        )

    min_duration = settings.min_meeting_duration_s
    if actual_duration_seconds is not None and actual_duration_seconds < min_duration:
        minutes, seconds = divmod(actual_duration_seconds, 60)
        return ValidationResult(
            decision=ProcessingDecision.SKIPPED_DURATION,
            reason=(
                f"Meeting duration ({minutes}m {seconds}s) is below the minimum "
                f"threshold of {min_duration // 60} minutes. This may indicate an "
                "accidental meeting open/close."
            ),
            actual_duration_seconds=actual_duration_seconds,
            transcript_word_count=transcript_word_count or 0,
        )

    min_words = settings.min_transcript_words
    if transcript_word_count is not None and transcript_word_count < min_words:
        return ValidationResult(
            decision=ProcessingDecision.SKIPPED_CONTENT,
            reason=(
                f"Transcript content ({transcript_word_count} words) is below the "
                f"minimum threshold of {min_words} words. Insufficient content for "
                "meaningful minutes generation."
            ),
            actual_duration_seconds=actual_duration_seconds,
            transcript_word_count=transcript_word_count,
        )

    duration_text = (
        f"{actual_duration_seconds // 60}m" if actual_duration_seconds else "unknown"
    )
    words_text = (
        f"{transcript_word_count} words" if transcript_word_count is not None else "unknown"
    )
    return ValidationResult(
        decision=ProcessingDecision.PROCESSED,
        reason=(
            f"Meeting passed all validation checks. Duration: {duration_text}, "
            f"Transcript: {words_text}."
        ),
        actual_duration_seconds=actual_duration_seconds,
        transcript_word_count=transcript_word_count,
    )


def record_processing_decision(
    meeting: Meeting, result: ValidationResult, now: datetime
) -> None:
    """Copy a validation result onto the meeting row (caller commits)."""
    meeting.processing_decision = result.decision.value
    meeting.processing_decision_reason = result.reason
    meeting.processing_decision_at = now
    if result.actual_duration_seconds is not None:
        meeting.actual_duration_seconds = result.actual_duration_seconds
    if result.transcript_word_count is not None:
        meeting.transcript_word_count = result.transcript_word_count


def record_manual_override(
    meeting: Meeting, admin_id: str, reason: str, now: datetime
) -> None:
    """Record an admin bypassing the thresholds (caller commits)."""
    meeting.processing_decision = ProcessingDecision.MANUAL_OVERRIDE.value
    meeting.processing_decision_reason = f"Manual override by admin {admin_id}: {reason}"
    meeting.processing_decision_at = now
