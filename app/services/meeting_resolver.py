from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from app.schemas.meeting_sync import ScheduledMeetingStatus
from app.services.meeting_models import MeetingMetadata
from app.services.meeting_store import MeetingConflict, MeetingConflictError, MeetingStore
from app.services.meeting_sync_errors import (
    DealAccountMismatchError,
    MeetingReconciliationError,
    NoLinkableDealError,
)

AUTO_IMPORTED_MEETING_TITLE = "Auto-imported Meeting"
DEFAULT_MEETING_TITLE = "Meeting"

# Natural-key columns are left alone on reuse so an update can never collide
# with another row's (account_id, title, start_time, host_email).
MUTABLE_MEETING_FIELDS = (
    "participant_emails",
    "source",
    "language",
    "timezone",
    "end_time",
    "duration_seconds",
)


@dataclass
class ResolvedMeeting:
    meeting_id: str
    was_created: bool
    deal_id: str
    scheduled_link: dict[str, Any]
    title: str


class MeetingResolver:
    def __init__(self, store: MeetingStore) -> None:
        self.store = store

    def reconcile(self, *, account_id: str, metadata: MeetingMetadata) -> ResolvedMeeting:
        scheduled_link = self.resolve_scheduled_link(account_id=account_id, metadata=metadata)
        deal = self.validate_deal_ownership(account_id=account_id, scheduled_link=scheduled_link)
        deal_id = str(deal["_id"])

        candidate_fields = self.build_candidate_fields(
            account_id=account_id,
            metadata=metadata,
            scheduled_link=scheduled_link,
            deal_id=deal_id,
        )
        meeting_id, was_created = self.resolve_meeting(
            account_id=account_id,
            external_id=metadata.external_id,
            candidate_fields=candidate_fields,
        )
        if not was_created:
            updates = {field: candidate_fields[field] for field in MUTABLE_MEETING_FIELDS}
            updates["updated_at"] = datetime.now(UTC)
            self.store.update_meeting(account_id=account_id, meeting_id=meeting_id, updates=updates)

        self.store.complete_scheduled_link(account_id=account_id, external_id=metadata.external_id)
        return ResolvedMeeting(
            meeting_id=meeting_id,
            was_created=was_created,
            deal_id=deal_id,
            scheduled_link=scheduled_link,
            title=candidate_fields["title"],
        )

    def resolve_scheduled_link(
        self,
        *,
        account_id: str,
        metadata: MeetingMetadata,
    ) -> dict[str, Any]:
        existing = self.store.get_scheduled_link(
            account_id=account_id,
            external_id=metadata.external_id,
        )
        if existing:
            return existing

        # Placeholder policy: attach to the account's most recent deal.
        deal = self.store.get_latest_deal(account_id)
        if not deal:
            raise NoLinkableDealError(
                "Cannot auto-create scheduled meeting without a deal to link to.",
                account_id=account_id,
                external_id=metadata.external_id,
            )

        return self.store.create_scheduled_link(
            account_id=account_id,
            external_id=metadata.external_id,
            deal_id=str(deal["_id"]),
            title=metadata.title or AUTO_IMPORTED_MEETING_TITLE,
            start_time=metadata.start_time,
            end_time=metadata.end_time,
            attendees=metadata.participant_emails,
            status=ScheduledMeetingStatus.scheduled,
        )

    def validate_deal_ownership(
        self,
        *,
        account_id: str,
        scheduled_link: Mapping[str, Any],
    ) -> dict[str, Any]:
        deal_id = scheduled_link.get("deal_id")
        deal = (
            self.store.get_deal(account_id=account_id, deal_id=str(deal_id))
            if deal_id
            else None
        )
        if not deal:
            raise DealAccountMismatchError(
                f"Scheduled meeting is linked to deal {deal_id!r}, which does not belong "
                f"to account {account_id!r}.",
                account_id=account_id,
                external_id=scheduled_link.get("external_id"),
            )
        return deal

    def build_candidate_fields(
        self,
        *,
        account_id: str,
        metadata: MeetingMetadata,
        scheduled_link: Mapping[str, Any],
        deal_id: str,
    ) -> dict[str, Any]:
        now = datetime.now(UTC)
        return {
            "account_id": account_id,
            "external_id": metadata.external_id,
            "deal_id": deal_id,
            "scheduled_link_id": scheduled_link.get("_id"),
            "title": metadata.title or scheduled_link.get("meeting_title") or DEFAULT_MEETING_TITLE,
            "host_email": metadata.host_email,
            "participant_emails": list(metadata.participant_emails),
            "source": metadata.source_platform.value,
            "language": metadata.language,
            "timezone": metadata.timezone,
            "start_time": metadata.start_time,
            "end_time": metadata.end_time,
            "duration_seconds": metadata.duration_seconds,
            "summary": None,
            "notes": None,
            "created_at": now,
            "updated_at": now,
        }

    def resolve_meeting(
        self,
        *,
        account_id: str,
        external_id: str,
        candidate_fields: Mapping[str, Any],
    ) -> tuple[str, bool]:
        """
        Find-then-insert-then-recover. Concurrent callers racing on the same
        external_id all converge on the single row that won the insert.
        """
        existing = self.store.find_meeting_by_external_id(
            account_id=account_id,
            external_id=external_id,
        )
        if existing:
            return str(existing["_id"]), False

        try:
            return self.store.insert_meeting(candidate_fields), True
        except MeetingConflictError as exc:
            conflict = exc.conflict

        if conflict == MeetingConflict.external_id:
            recovered = self.store.find_meeting_by_external_id(
                account_id=account_id,
                external_id=external_id,
            )
        else:
            recovered = self.store.find_meeting_by_natural_key(
                account_id=account_id,
                title=candidate_fields.get("title"),
                start_time=candidate_fields.get("start_time"),
                host_email=candidate_fields.get("host_email"),
            )

        if not recovered:
            raise MeetingReconciliationError(
                f"Insert hit a {conflict.value} uniqueness conflict but no existing meeting "
                "was found on re-query.",
                account_id=account_id,
                external_id=external_id,
            )
        return str(recovered["_id"]), False
