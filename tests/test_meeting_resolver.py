import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

import pytest

from app.services.meeting_models import MeetingMetadata
from app.services.meeting_resolver import AUTO_IMPORTED_MEETING_TITLE, MeetingResolver
from app.services.meeting_store import (
    InMemoryMeetingStore,
    MeetingConflict,
    MeetingConflictError,
)
from app.services.meeting_sync_errors import (
    DealAccountMismatchError,
    MeetingReconciliationError,
    NoLinkableDealError,
)

_START = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)
_END = datetime(2026, 3, 2, 10, 45, tzinfo=UTC)


def _metadata(external_id: str = "meeting-1", **overrides: Any) -> MeetingMetadata:
    values: dict[str, Any] = {
        "external_id": external_id,
        "title": "Discovery call",
        "host_email": "host@example.com",
        "participant_emails": ["buyer@client.com"],
        "start_time": _START,
        "end_time": _END,
        "duration_seconds": 2700,
    }
    values.update(overrides)
    return MeetingMetadata(**values)


def _stored_meetings(store: InMemoryMeetingStore, account_id: str) -> list[dict[str, Any]]:
    return [meeting for meeting in store._meetings.values() if meeting["account_id"] == account_id]


def _candidate(account_id: str, external_id: str, **overrides: Any) -> dict[str, Any]:
    values: dict[str, Any] = {
        "account_id": account_id,
        "external_id": external_id,
        "title": "Discovery call",
        "start_time": _START,
        "host_email": "host@example.com",
    }
    values.update(overrides)
    return values


class _StaleFirstLookupStore(InMemoryMeetingStore):
    """Misses the row on the first lookup, like a reader that lost a race."""

    def __init__(self) -> None:
        super().__init__()
        self.external_id_lookups = 0

    def find_meeting_by_external_id(self, *, account_id: str, external_id: str) -> dict[str, Any] | None:
        self.external_id_lookups += 1
        if self.external_id_lookups == 1:
            return None
        return super().find_meeting_by_external_id(account_id=account_id, external_id=external_id)


class _PhantomConflictStore(InMemoryMeetingStore):
    def insert_meeting(self, record: Any) -> str:
        raise MeetingConflictError(MeetingConflict.external_id)


class _BarrierLookupStore(InMemoryMeetingStore):
    """Holds every caller at its first lookup until all of them have looked."""

    def __init__(self, parties: int) -> None:
        super().__init__()
        self._barrier = threading.Barrier(parties)
        self._local = threading.local()

    def find_meeting_by_external_id(self, *, account_id: str, external_id: str) -> dict[str, Any] | None:
        result = super().find_meeting_by_external_id(account_id=account_id, external_id=external_id)
        if not getattr(self._local, "waited", False):
            self._local.waited = True
            self._barrier.wait(timeout=5)
        return result


def test_reconcile_creates_link_from_latest_deal_and_completes_it() -> None:
    store = InMemoryMeetingStore()
    store.create_deal(account_id="account-1", company_name="Older Co")
    newest_deal = store.create_deal(account_id="account-1", company_name="Newest Co")
    store.create_deal(account_id="account-2", company_name="Other tenant")
    resolver = MeetingResolver(store)

    resolved = resolver.reconcile(account_id="account-1", metadata=_metadata())

    assert resolved.was_created is True
    assert resolved.deal_id == newest_deal["_id"]
    link = store.get_scheduled_link(account_id="account-1", external_id="meeting-1")
    assert link is not None
    assert link["deal_id"] == newest_deal["_id"]
    assert link["meeting_title"] == "Discovery call"
    assert link["status"] == "completed"

    meeting = store.get_meeting(account_id="account-1", meeting_id=resolved.meeting_id)
    assert meeting is not None
    assert meeting["deal_id"] == newest_deal["_id"]
    assert meeting["scheduled_link_id"] == link["_id"]
    assert meeting["duration_seconds"] == 2700


def test_reconcile_uses_auto_imported_title_for_untitled_link() -> None:
    store = InMemoryMeetingStore()
    store.create_deal(account_id="account-1", company_name="Acme")

    resolved = MeetingResolver(store).reconcile(
        account_id="account-1",
        metadata=_metadata(title=None),
    )

    link = store.get_scheduled_link(account_id="account-1", external_id="meeting-1")
    assert link is not None
    assert link["meeting_title"] == AUTO_IMPORTED_MEETING_TITLE
    assert resolved.title == AUTO_IMPORTED_MEETING_TITLE


def test_reconcile_reuses_existing_meeting_and_refreshes_mutable_fields() -> None:
    store = InMemoryMeetingStore()
    store.create_deal(account_id="account-1", company_name="Acme")
    resolver = MeetingResolver(store)

    first = resolver.reconcile(account_id="account-1", metadata=_metadata())
    second = resolver.reconcile(
        account_id="account-1",
        metadata=_metadata(participant_emails=["buyer@client.com", "cfo@client.com"], timezone="Europe/Madrid"),
    )

    assert first.was_created is True
    assert second.was_created is False
    assert second.meeting_id == first.meeting_id
    assert len(_stored_meetings(store, "account-1")) == 1
    meeting = store.get_meeting(account_id="account-1", meeting_id=first.meeting_id)
    assert meeting is not None
    assert meeting["participant_emails"] == ["buyer@client.com", "cfo@client.com"]
    assert meeting["timezone"] == "Europe/Madrid"
    assert meeting["title"] == "Discovery call"


def test_reconcile_without_deals_fails_before_writing() -> None:
    store = InMemoryMeetingStore()

    with pytest.raises(NoLinkableDealError) as exc_info:
        MeetingResolver(store).reconcile(account_id="account-1", metadata=_metadata())

    assert exc_info.value.status_code == 404
    assert store.get_scheduled_link(account_id="account-1", external_id="meeting-1") is None
    assert _stored_meetings(store, "account-1") == []


def test_link_to_foreign_deal_is_rejected_without_creating_meeting() -> None:
    store = InMemoryMeetingStore()
    foreign_deal = store.create_deal(account_id="account-2", company_name="Other tenant")
    store.create_scheduled_link(
        account_id="account-1",
        external_id="meeting-1",
        deal_id=foreign_deal["_id"],
        title="Discovery call",
        start_time=_START,
        end_time=_END,
        attendees=[],
    )

    with pytest.raises(DealAccountMismatchError) as exc_info:
        MeetingResolver(store).reconcile(account_id="account-1", metadata=_metadata())

    assert exc_info.value.status_code == 409
    assert _stored_meetings(store, "account-1") == []
    assert _stored_meetings(store, "account-2") == []


def test_same_external_id_in_two_accounts_creates_two_meetings() -> None:
    store = InMemoryMeetingStore()
    store.create_deal(account_id="account-1", company_name="Acme")
    store.create_deal(account_id="account-2", company_name="Globex")
    resolver = MeetingResolver(store)

    first = resolver.reconcile(account_id="account-1", metadata=_metadata())
    second = resolver.reconcile(account_id="account-2", metadata=_metadata())

    assert first.meeting_id != second.meeting_id
    assert first.was_created is True
    assert second.was_created is True


def test_external_id_conflict_recovers_existing_row() -> None:
    store = _StaleFirstLookupStore()
    existing_id = store.insert_meeting(_candidate("account-1", "meeting-1"))

    meeting_id, was_created = MeetingResolver(store).resolve_meeting(
        account_id="account-1",
        external_id="meeting-1",
        candidate_fields=_candidate("account-1", "meeting-1"),
    )

    assert meeting_id == existing_id
    assert was_created is False
    assert len(_stored_meetings(store, "account-1")) == 1


def test_natural_key_conflict_recovers_existing_row() -> None:
    store = InMemoryMeetingStore()
    existing_id = store.insert_meeting(_candidate("account-1", "meeting-original"))

    meeting_id, was_created = MeetingResolver(store).resolve_meeting(
        account_id="account-1",
        external_id="meeting-duplicate",
        candidate_fields=_candidate("account-1", "meeting-duplicate"),
    )

    assert meeting_id == existing_id
    assert was_created is False
    assert len(_stored_meetings(store, "account-1")) == 1


def test_untitled_meetings_do_not_collide_on_natural_key() -> None:
    store = InMemoryMeetingStore()
    resolver = MeetingResolver(store)

    first_id, _ = resolver.resolve_meeting(
        account_id="account-1",
        external_id="meeting-1",
        candidate_fields=_candidate("account-1", "meeting-1", start_time=None),
    )
    second_id, second_created = resolver.resolve_meeting(
        account_id="account-1",
        external_id="meeting-2",
        candidate_fields=_candidate("account-1", "meeting-2", start_time=None),
    )

    assert first_id != second_id
    assert second_created is True


def test_conflict_without_recoverable_row_is_a_reconciliation_error() -> None:
    store = _PhantomConflictStore()

    with pytest.raises(MeetingReconciliationError, match="external_id"):
        MeetingResolver(store).resolve_meeting(
            account_id="account-1",
            external_id="meeting-1",
            candidate_fields=_candidate("account-1", "meeting-1"),
        )


def test_concurrent_resolutions_converge_on_one_meeting() -> None:
    workers = 6
    store = _BarrierLookupStore(parties=workers)
    resolver = MeetingResolver(store)

    def resolve(_: int) -> tuple[str, bool]:
        return resolver.resolve_meeting(
            account_id="account-1",
            external_id="meeting-1",
            candidate_fields=_candidate("account-1", "meeting-1"),
        )

    with ThreadPoolExecutor(max_workers=workers) as executor:
        results = list(executor.map(resolve, range(workers)))

    meeting_ids = {meeting_id for meeting_id, _ in results}
    assert len(meeting_ids) == 1
    assert sum(1 for _, was_created in results if was_created) == 1
    assert len(_stored_meetings(store, "account-1")) == 1
