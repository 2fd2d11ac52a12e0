from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.schemas.meeting_sync import SourcePlatform

DEFAULT_SOURCE_PLATFORM = SourcePlatform.meetgeek
UNKNOWN_SPEAKER_LABEL = "Unknown speaker"

SOURCE_PLATFORM_LOOKUP: dict[str, SourcePlatform] = {
    "google": SourcePlatform.google_meet,
    "meet": SourcePlatform.google_meet,
    "google_meet": SourcePlatform.google_meet,
    "invitation": SourcePlatform.google_meet,
    "zoom": SourcePlatform.meetgeek,
    "teams": SourcePlatform.meetgeek,
    "meetgeek": SourcePlatform.meetgeek,
    "calendar": SourcePlatform.calendar,
    "manual": SourcePlatform.manual,
}


@dataclass
class MeetingMetadata:
    external_id: str
    title: str | None = None
    host_email: str | None = None
    participant_emails: list[str] = field(default_factory=list)
    source_platform: SourcePlatform = DEFAULT_SOURCE_PLATFORM
    language: str = "en-US"
    timezone: str = "UTC"
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_seconds: int | None = None


@dataclass
class TranscriptSegment:
    sequence_number: int
    speaker_label: str
    text: str
    timestamp: datetime | None = None


@dataclass
class MeetingBundle:
    metadata: MeetingMetadata
    transcript_segments: list[TranscriptSegment] = field(default_factory=list)
    summary_text: str | None = None
    summary_payload: dict[str, Any] | None = None
    highlights: list[str] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)


def normalize_source_platform(value: Any) -> SourcePlatform:
    text = to_text(value)
    if not text:
        return DEFAULT_SOURCE_PLATFORM
    return SOURCE_PLATFORM_LOOKUP.get(text.lower(), DEFAULT_SOURCE_PLATFORM)


def derive_duration_seconds(start_time: datetime | None, end_time: datetime | None) -> int | None:
    if not start_time or not end_time:
        return None
    return round((end_time - start_time).total_seconds())


def is_placeholder_summary(summary_text: str | None, placeholder_texts: Iterable[str]) -> bool:
    """
    True when the text carries no real summary: empty, or one of the
    upstream/processing placeholders (case-insensitive, trailing dots ignored).
    """
    if not summary_text or not summary_text.strip():
        return True
    normalized = summary_text.strip().lower().rstrip(".… ")
    return normalized in {placeholder.strip().lower() for placeholder in placeholder_texts}


def to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return str(value)
    return None


def to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return None
        try:
            return int(cleaned)
        except ValueError:
            return None
    return None


def to_email_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    emails: list[str] = []
    for item in value:
        candidate = item.get("email") if isinstance(item, Mapping) else item
        email = to_text(candidate)
        if not email or "@" not in email:
            continue
        normalized = email.lower()
        if normalized not in emails:
            emails.append(normalized)
    return emails


def parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, int | float) and not isinstance(value, bool):
        # MeetGeek sends epoch seconds in a few places.
        try:
            return datetime.fromtimestamp(float(value), tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = to_text(value)
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
