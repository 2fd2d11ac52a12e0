from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from app.services.meetgeek_api_client import MeetGeekApiClient, MeetGeekApiError
from app.services.meeting_models import (
    UNKNOWN_SPEAKER_LABEL,
    MeetingBundle,
    MeetingMetadata,
    TranscriptSegment,
    derive_duration_seconds,
    normalize_source_platform,
    parse_datetime,
    to_email_list,
    to_int,
    to_text,
)
from app.services.meeting_sync_errors import MeetingNotReadyError, MetadataFetchError

logger = logging.getLogger(__name__)


def _decode_bare_list(payload: Any) -> list[Any] | None:
    return payload if isinstance(payload, list) else None


def _decode_keyed_list(key: str) -> Callable[[Any], list[Any] | None]:
    def decode(payload: Any) -> list[Any] | None:
        if not isinstance(payload, Mapping):
            return None
        value = payload.get(key)
        return value if isinstance(value, list) else None

    return decode


# Fixed priority: the first decoder that recognizes the payload wins.
TRANSCRIPT_SHAPES: tuple[tuple[str, Callable[[Any], list[Any] | None]], ...] = (
    ("bare", _decode_bare_list),
    ("transcript", _decode_keyed_list("transcript")),
    ("segments", _decode_keyed_list("segments")),
    ("sentences", _decode_keyed_list("sentences")),
)

HIGHLIGHT_SHAPES: tuple[tuple[str, Callable[[Any], list[Any] | None]], ...] = (
    ("bare", _decode_bare_list),
    ("highlights", _decode_keyed_list("highlights")),
)


def decode_transcript_segments(payload: Any) -> list[TranscriptSegment]:
    raw_items, shape = _decode_first_shape(payload, TRANSCRIPT_SHAPES)
    if raw_items is None:
        if payload is not None:
            logger.warning("Unrecognized transcript payload shape type=%s", type(payload).__name__)
        return []

    segments: list[TranscriptSegment] = []
    for position, raw_item in enumerate(raw_items):
        segment = _decode_transcript_item(raw_item, position=position, shape=shape)
        if segment:
            segments.append(segment)
    return segments


def decode_highlights(payload: Any) -> list[str]:
    raw_items, _ = _decode_first_shape(payload, HIGHLIGHT_SHAPES)
    if raw_items is None:
        return []

    highlights: list[str] = []
    for raw_item in raw_items:
        if isinstance(raw_item, Mapping):
            text = to_text(raw_item.get("text")) or to_text(raw_item.get("highlight"))
        else:
            text = to_text(raw_item)
        if text:
            highlights.append(text)
    return highlights


def decode_summary(payload: Any) -> tuple[str | None, dict[str, Any] | None]:
    if isinstance(payload, str):
        return to_text(payload), {"summary": payload}
    if not isinstance(payload, Mapping):
        return None, None
    return to_text(payload.get("summary")), dict(payload)


def decode_metadata(external_id: str, payload: Mapping[str, Any]) -> MeetingMetadata:
    start_time = parse_datetime(payload.get("timestamp_start_utc"))
    end_time = parse_datetime(payload.get("timestamp_end_utc"))
    host_email = to_text(payload.get("host_email"))
    return MeetingMetadata(
        external_id=external_id,
        title=to_text(payload.get("title")),
        host_email=host_email.lower() if host_email else None,
        participant_emails=to_email_list(payload.get("participant_emails")),
        source_platform=normalize_source_platform(payload.get("source")),
        language=to_text(payload.get("language")) or "en-US",
        timezone=to_text(payload.get("timezone")) or "UTC",
        start_time=start_time,
        end_time=end_time,
        duration_seconds=derive_duration_seconds(start_time, end_time),
    )


def _decode_first_shape(
    payload: Any,
    shapes: tuple[tuple[str, Callable[[Any], list[Any] | None]], ...],
) -> tuple[list[Any] | None, str | None]:
    for shape_name, decoder in shapes:
        raw_items = decoder(payload)
        if raw_items is not None:
            return raw_items, shape_name
    return None, None


def _decode_transcript_item(
    raw_item: Any,
    *,
    position: int,
    shape: str | None,
) -> TranscriptSegment | None:
    if not isinstance(raw_item, Mapping):
        return None

    if shape == "sentences":
        # Raw MeetGeek sentences: id/speaker/transcript/timestamp.
        sequence_number = to_int(raw_item.get("id"))
        text = to_text(raw_item.get("transcript")) or to_text(raw_item.get("text"))
    else:
        sequence_number = to_int(raw_item.get("sentence_id"))
        if sequence_number is None:
            sequence_number = to_int(raw_item.get("id"))
        text = to_text(raw_item.get("text")) or to_text(raw_item.get("transcript"))
    if not text:
        return None

    return TranscriptSegment(
        sequence_number=sequence_number if sequence_number is not None else position,
        speaker_label=to_text(raw_item.get("speaker")) or UNKNOWN_SPEAKER_LABEL,
        text=text,
        timestamp=parse_datetime(raw_item.get("timestamp")),
    )


class MeetingSourceAdapter:
    def __init__(self, client: MeetGeekApiClient) -> None:
        self.client = client

    def fetch_meeting_bundle(self, external_id: str) -> MeetingBundle:
        with ThreadPoolExecutor(max_workers=4, thread_name_prefix="meetgeek-fetch") as executor:
            metadata_future = executor.submit(self.client.fetch_meeting, external_id)
            transcript_future = executor.submit(self.client.fetch_transcript, external_id)
            summary_future = executor.submit(self.client.fetch_summary, external_id)
            highlights_future = executor.submit(self.client.fetch_highlights, external_id)

            try:
                metadata_payload = metadata_future.result()
            except MeetGeekApiError as exc:
                raise MetadataFetchError(str(exc), external_id=external_id) from exc
            if metadata_payload is None:
                raise MeetingNotReadyError(
                    "The meeting may still be processing. Please try again in a few minutes.",
                    external_id=external_id,
                )

            degraded: list[str] = []
            transcript_payload = self._optional_result(
                transcript_future,
                resource="transcript",
                external_id=external_id,
                degraded=degraded,
            )
            summary_payload = self._optional_result(
                summary_future,
                resource="summary",
                external_id=external_id,
                degraded=degraded,
            )
            highlights_payload = self._optional_result(
                highlights_future,
                resource="highlights",
                external_id=external_id,
                degraded=degraded,
            )

        summary_text, raw_summary = decode_summary(summary_payload)
        return MeetingBundle(
            metadata=decode_metadata(external_id, metadata_payload),
            transcript_segments=decode_transcript_segments(transcript_payload),
            summary_text=summary_text,
            summary_payload=raw_summary,
            highlights=decode_highlights(highlights_payload),
            degraded=degraded,
        )

    def _optional_result(
        self,
        future: Future,
        *,
        resource: str,
        external_id: str,
        degraded: list[str],
    ) -> Any:
        try:
            return future.result()
        except MeetGeekApiError as exc:
            logger.warning(
                "MeetGeek resource unavailable resource=%s external_id=%s error=%s",
                resource,
                external_id,
                exc,
            )
            degraded.append(f"{resource}_fetch_failed: {exc}")
            return None
