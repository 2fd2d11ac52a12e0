from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.services.meeting_models import TranscriptSegment, is_placeholder_summary
from app.services.meeting_store import BatchInsertError, MeetingStore

logger = logging.getLogger(__name__)

DEFAULT_MEETING_NOTES = "Meeting completed - processing insights"


@dataclass
class ReplaceResult:
    fetched_count: int
    stored_count: int = 0
    replaced: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass
class SummaryResult:
    stored: bool = False
    summary_applied: bool = False
    errors: list[str] = field(default_factory=list)


class MeetingArtifactReplacer:
    def __init__(
        self,
        store: MeetingStore,
        *,
        batch_size: int = 100,
        placeholder_texts: Iterable[str] = (),
    ) -> None:
        self.store = store
        self.batch_size = max(batch_size, 1)
        self.placeholder_texts = tuple(placeholder_texts)

    def replace_transcript(
        self,
        *,
        account_id: str,
        meeting_id: str,
        segments: Sequence[TranscriptSegment],
    ) -> ReplaceResult:
        records = [
            {
                "account_id": account_id,
                "meeting_id": meeting_id,
                "sequence_number": segment.sequence_number,
                "speaker": segment.speaker_label,
                "text": segment.text,
                "timestamp": segment.timestamp,
            }
            for segment in segments
        ]
        return self._replace_collection(
            collection="transcripts",
            account_id=account_id,
            meeting_id=meeting_id,
            records=records,
            delete=self.store.delete_transcript_segments,
            insert=self.store.insert_transcript_segments,
        )

    def replace_highlights(
        self,
        *,
        account_id: str,
        meeting_id: str,
        highlights: Sequence[str],
    ) -> ReplaceResult:
        records = [
            {
                "account_id": account_id,
                "meeting_id": meeting_id,
                "highlight": highlight,
            }
            for highlight in highlights
        ]
        return self._replace_collection(
            collection="highlights",
            account_id=account_id,
            meeting_id=meeting_id,
            records=records,
            delete=self.store.delete_highlights,
            insert=self.store.insert_highlights,
        )

    def upsert_summary(
        self,
        *,
        account_id: str,
        meeting_id: str,
        summary_text: str | None,
        summary_payload: Mapping[str, Any] | None = None,
    ) -> SummaryResult:
        result = SummaryResult()
        meaningful = self.is_meaningful_summary(summary_text)

        if meaningful:
            try:
                self.store.upsert_summary(
                    account_id=account_id,
                    meeting_id=meeting_id,
                    summary=summary_text,
                    ai_insights=summary_payload,
                )
                result.stored = True
            except Exception as exc:
                logger.warning(
                    "Summary upsert failed account_id=%s meeting_id=%s error=%s",
                    account_id,
                    meeting_id,
                    exc,
                )
                result.errors.append(f"summary_upsert_failed: {exc}")

        updates: dict[str, Any] = {"updated_at": datetime.now(UTC)}
        if meaningful:
            updates["summary"] = summary_text
            updates["notes"] = summary_text
        elif summary_text:
            updates["notes"] = summary_text
        try:
            if not summary_text and not self._has_notes(account_id, meeting_id):
                # A missing summary only fills empty notes, never replaces them.
                updates["notes"] = DEFAULT_MEETING_NOTES
            self.store.update_meeting(account_id=account_id, meeting_id=meeting_id, updates=updates)
            result.summary_applied = meaningful
        except Exception as exc:
            logger.warning(
                "Meeting summary update failed account_id=%s meeting_id=%s error=%s",
                account_id,
                meeting_id,
                exc,
            )
            result.errors.append(f"meeting_summary_update_failed: {exc}")
        return result

    def is_meaningful_summary(self, summary_text: str | None) -> bool:
        return not is_placeholder_summary(summary_text, self.placeholder_texts)

    def _has_notes(self, account_id: str, meeting_id: str) -> bool:
        meeting = self.store.get_meeting(account_id=account_id, meeting_id=meeting_id)
        return bool(meeting and meeting.get("notes"))

    def _replace_collection(
        self,
        *,
        collection: str,
        account_id: str,
        meeting_id: str,
        records: list[dict[str, Any]],
        delete: Callable[..., int],
        insert: Callable[[Sequence[Mapping[str, Any]]], int],
    ) -> ReplaceResult:
        result = ReplaceResult(fetched_count=len(records))
        # An empty fetch means "not ready yet", never "delete everything".
        if not records:
            return result

        try:
            deleted_count = delete(account_id=account_id, meeting_id=meeting_id)
        except Exception as exc:
            logger.warning(
                "Existing rows not cleared, keeping previous set collection=%s "
                "account_id=%s meeting_id=%s error=%s",
                collection,
                account_id,
                meeting_id,
                exc,
            )
            result.errors.append(f"{collection}_delete_failed: {exc}")
            return result

        result.replaced = True
        total_batches = (len(records) + self.batch_size - 1) // self.batch_size
        for batch_index, start in enumerate(range(0, len(records), self.batch_size), start=1):
            batch = records[start : start + self.batch_size]
            try:
                result.stored_count += insert(batch)
            except BatchInsertError as exc:
                result.stored_count += exc.inserted_count
                self._log_batch_failure(collection, meeting_id, batch_index, total_batches, exc)
                result.errors.append(f"{collection}_batch_{batch_index}_failed: {exc}")
            except Exception as exc:
                self._log_batch_failure(collection, meeting_id, batch_index, total_batches, exc)
                result.errors.append(f"{collection}_batch_{batch_index}_failed: {exc}")

        logger.info(
            "Collection replaced collection=%s meeting_id=%s deleted=%s stored=%s fetched=%s",
            collection,
            meeting_id,
            deleted_count,
            result.stored_count,
            result.fetched_count,
        )
        return result

    def _log_batch_failure(
        self,
        collection: str,
        meeting_id: str,
        batch_index: int,
        total_batches: int,
        exc: Exception,
    ) -> None:
        logger.warning(
            "Batch insert failed collection=%s meeting_id=%s batch=%s/%s error=%s",
            collection,
            meeting_id,
            batch_index,
            total_batches,
            exc,
        )
