from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from enum import StrEnum
from functools import lru_cache
from typing import Any
from uuid import uuid4

from app.core.config import Settings
from app.schemas.meeting_sync import AnalysisJobStatus, ScheduledMeetingStatus

MEETINGS_EXTERNAL_ID_INDEX = "meetings_external_id_key"
MEETINGS_NATURAL_KEY_INDEX = "meetings_unique_constraint"


class MeetingConflict(StrEnum):
    external_id = "external_id"
    natural_key = "natural_key"


class MeetingConflictError(Exception):
    def __init__(self, conflict: MeetingConflict) -> None:
        super().__init__(f"Meeting insert violates {conflict.value} uniqueness.")
        self.conflict = conflict


class BatchInsertError(Exception):
    def __init__(self, message: str, inserted_count: int = 0) -> None:
        super().__init__(message)
        self.inserted_count = inserted_count


def _new_id() -> str:
    return str(uuid4())


class MeetingStore(ABC):
    @abstractmethod
    def create_deal(self, *, account_id: str, company_name: str) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get_deal(self, *, account_id: str, deal_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_latest_deal(self, account_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def update_deal_activity(
        self,
        *,
        account_id: str,
        deal_id: str,
        updates: Mapping[str, Any],
        increment_total_meetings: bool,
    ) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_scheduled_link(self, *, account_id: str, external_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def create_scheduled_link(
        self,
        *,
        account_id: str,
        external_id: str,
        deal_id: str,
        title: str,
        start_time: datetime | None,
        end_time: datetime | None,
        attendees: Sequence[str],
        status: ScheduledMeetingStatus = ScheduledMeetingStatus.scheduled,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def complete_scheduled_link(self, *, account_id: str, external_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def find_meeting_by_external_id(
        self,
        *,
        account_id: str,
        external_id: str,
    ) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def find_meeting_by_natural_key(
        self,
        *,
        account_id: str,
        title: str | None,
        start_time: datetime | None,
        host_email: str | None,
    ) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def insert_meeting(self, record: Mapping[str, Any]) -> str:
        raise NotImplementedError

    @abstractmethod
    def update_meeting(
        self,
        *,
        account_id: str,
        meeting_id: str,
        updates: Mapping[str, Any],
    ) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_meeting(self, *, account_id: str, meeting_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def list_transcript_segments(self, *, account_id: str, meeting_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def delete_transcript_segments(self, *, account_id: str, meeting_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def insert_transcript_segments(self, records: Sequence[Mapping[str, Any]]) -> int:
        raise NotImplementedError

    @abstractmethod
    def delete_highlights(self, *, account_id: str, meeting_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def insert_highlights(self, records: Sequence[Mapping[str, Any]]) -> int:
        raise NotImplementedError

    @abstractmethod
    def upsert_summary(
        self,
        *,
        account_id: str,
        meeting_id: str,
        summary: str,
        ai_insights: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def create_analysis_job(
        self,
        *,
        account_id: str,
        meeting_id: str,
        job_type: str,
        model_used: str,
    ) -> str:
        raise NotImplementedError


class InMemoryMeetingStore(MeetingStore):
    def __init__(self) -> None:
        # Stands in for the database's atomic index checks.
        self._lock = threading.Lock()
        self._deals: dict[str, dict[str, Any]] = {}
        self._scheduled_links: dict[tuple[str, str], dict[str, Any]] = {}
        self._meetings: dict[str, dict[str, Any]] = {}
        self._transcripts: list[dict[str, Any]] = []
        self._highlights: list[dict[str, Any]] = []
        self._summaries: dict[tuple[str, str], dict[str, Any]] = {}
        self._analysis_jobs: list[dict[str, Any]] = []

    def create_deal(self, *, account_id: str, company_name: str) -> dict[str, Any]:
        now = datetime.now(UTC)
        deal = {
            "_id": _new_id(),
            "account_id": account_id,
            "company_name": company_name.strip(),
            "total_meetings": 0,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._deals[deal["_id"]] = deal
        return dict(deal)

    def get_deal(self, *, account_id: str, deal_id: str) -> dict[str, Any] | None:
        deal = self._deals.get(deal_id)
        if not deal or deal.get("account_id") != account_id:
            return None
        return dict(deal)

    def get_latest_deal(self, account_id: str) -> dict[str, Any] | None:
        # Insertion order breaks ties between equal created_at values.
        latest: dict[str, Any] | None = None
        for deal in self._snapshot(self._deals):
            if deal.get("account_id") != account_id:
                continue
            if latest is None or deal["created_at"] >= latest["created_at"]:
                latest = deal
        return dict(latest) if latest else None

    def update_deal_activity(
        self,
        *,
        account_id: str,
        deal_id: str,
        updates: Mapping[str, Any],
        increment_total_meetings: bool,
    ) -> int:
        with self._lock:
            deal = self._deals.get(deal_id)
            if not deal or deal.get("account_id") != account_id:
                return 0
            deal.update(dict(updates))
            if increment_total_meetings:
                deal["total_meetings"] = int(deal.get("total_meetings") or 0) + 1
            deal["updated_at"] = datetime.now(UTC)
        return 1

    def get_scheduled_link(self, *, account_id: str, external_id: str) -> dict[str, Any] | None:
        link = self._scheduled_links.get((account_id, external_id))
        return dict(link) if link else None

    def create_scheduled_link(
        self,
        *,
        account_id: str,
        external_id: str,
        deal_id: str,
        title: str,
        start_time: datetime | None,
        end_time: datetime | None,
        attendees: Sequence[str],
        status: ScheduledMeetingStatus = ScheduledMeetingStatus.scheduled,
    ) -> dict[str, Any]:
        key = (account_id, external_id)
        with self._lock:
            existing = self._scheduled_links.get(key)
            if existing:
                return dict(existing)
            now = datetime.now(UTC)
            link = {
                "_id": _new_id(),
                "account_id": account_id,
                "external_id": external_id,
                "deal_id": deal_id,
                "meeting_title": title,
                "status": status.value,
                "start_time": start_time,
                "end_time": end_time,
                "attendees": list(attendees),
                "created_at": now,
                "updated_at": now,
            }
            self._scheduled_links[key] = link
        return dict(link)

    def complete_scheduled_link(self, *, account_id: str, external_id: str) -> bool:
        with self._lock:
            link = self._scheduled_links.get((account_id, external_id))
            if not link or link.get("status") != ScheduledMeetingStatus.scheduled.value:
                return False
            link["status"] = ScheduledMeetingStatus.completed.value
            link["updated_at"] = datetime.now(UTC)
        return True

    def find_meeting_by_external_id(
        self,
        *,
        account_id: str,
        external_id: str,
    ) -> dict[str, Any] | None:
        for meeting in self._snapshot(self._meetings):
            if meeting.get("account_id") == account_id and meeting.get("external_id") == external_id:
                return dict(meeting)
        return None

    def find_meeting_by_natural_key(
        self,
        *,
        account_id: str,
        title: str | None,
        start_time: datetime | None,
        host_email: str | None,
    ) -> dict[str, Any] | None:
        if title is None or start_time is None:
            return None
        for meeting in self._snapshot(self._meetings):
            if self._natural_key(meeting) == (account_id, title, start_time, host_email):
                return dict(meeting)
        return None

    def insert_meeting(self, record: Mapping[str, Any]) -> str:
        payload = dict(record)
        with self._lock:
            for meeting in self._meetings.values():
                if (
                    meeting.get("account_id") == payload.get("account_id")
                    and meeting.get("external_id") == payload.get("external_id")
                ):
                    raise MeetingConflictError(MeetingConflict.external_id)
            natural_key = self._natural_key(payload)
            if natural_key:
                for meeting in self._meetings.values():
                    if self._natural_key(meeting) == natural_key:
                        raise MeetingConflictError(MeetingConflict.natural_key)
            payload["_id"] = _new_id()
            self._meetings[payload["_id"]] = payload
        return payload["_id"]

    def update_meeting(
        self,
        *,
        account_id: str,
        meeting_id: str,
        updates: Mapping[str, Any],
    ) -> int:
        with self._lock:
            meeting = self._meetings.get(meeting_id)
            if not meeting or meeting.get("account_id") != account_id:
                return 0
            meeting.update(dict(updates))
        return 1

    def get_meeting(self, *, account_id: str, meeting_id: str) -> dict[str, Any] | None:
        meeting = self._meetings.get(meeting_id)
        if not meeting or meeting.get("account_id") != account_id:
            return None
        return dict(meeting)

    def list_transcript_segments(self, *, account_id: str, meeting_id: str) -> list[dict[str, Any]]:
        segments = [
            dict(record)
            for record in self._transcripts
            if record.get("account_id") == account_id and record.get("meeting_id") == meeting_id
        ]
        return sorted(segments, key=lambda record: record.get("sequence_number") or 0)

    def delete_transcript_segments(self, *, account_id: str, meeting_id: str) -> int:
        with self._lock:
            kept = [
                record
                for record in self._transcripts
                if record.get("account_id") != account_id or record.get("meeting_id") != meeting_id
            ]
            deleted_count = len(self._transcripts) - len(kept)
            self._transcripts = kept
        return deleted_count

    def insert_transcript_segments(self, records: Sequence[Mapping[str, Any]]) -> int:
        with self._lock:
            for record in records:
                self._transcripts.append({"_id": _new_id(), **dict(record)})
        return len(records)

    def delete_highlights(self, *, account_id: str, meeting_id: str) -> int:
        with self._lock:
            kept = [
                record
                for record in self._highlights
                if record.get("account_id") != account_id or record.get("meeting_id") != meeting_id
            ]
            deleted_count = len(self._highlights) - len(kept)
            self._highlights = kept
        return deleted_count

    def insert_highlights(self, records: Sequence[Mapping[str, Any]]) -> int:
        with self._lock:
            for record in records:
                self._highlights.append({"_id": _new_id(), **dict(record)})
        return len(records)

    def upsert_summary(
        self,
        *,
        account_id: str,
        meeting_id: str,
        summary: str,
        ai_insights: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        key = (meeting_id, account_id)
        now = datetime.now(UTC)
        with self._lock:
            record = self._summaries.get(key)
            if not record:
                record = {
                    "_id": _new_id(),
                    "account_id": account_id,
                    "meeting_id": meeting_id,
                    "created_at": now,
                }
                self._summaries[key] = record
            record["summary"] = summary
            record["ai_insights"] = dict(ai_insights) if ai_insights else None
            record["updated_at"] = now
        return dict(record)

    def create_analysis_job(
        self,
        *,
        account_id: str,
        meeting_id: str,
        job_type: str,
        model_used: str,
    ) -> str:
        job = {
            "_id": _new_id(),
            "account_id": account_id,
            "meeting_id": meeting_id,
            "job_type": job_type,
            "status": AnalysisJobStatus.processing.value,
            "model_used": model_used,
            "started_at": datetime.now(UTC),
        }
        with self._lock:
            self._analysis_jobs.append(job)
        return job["_id"]

    def _snapshot(self, rows: dict[Any, dict[str, Any]]) -> list[dict[str, Any]]:
        with self._lock:
            return list(rows.values())

    def _natural_key(
        self,
        record: Mapping[str, Any],
    ) -> tuple[Any, Any, Any, Any] | None:
        if record.get("title") is None or record.get("start_time") is None:
            return None
        return (
            record.get("account_id"),
            record.get("title"),
            record.get("start_time"),
            record.get("host_email"),
        )


class MongoMeetingStore(MeetingStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import ASCENDING, DESCENDING, MongoClient

        self._desc = DESCENDING
        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        database = self._client[db_name]
        self._deals = database["deals"]
        self._scheduled_links = database["scheduled_meetings"]
        self._meetings = database["meetings"]
        self._transcripts = database["transcripts"]
        self._highlights = database["highlights"]
        self._summaries = database["summaries"]
        self._analysis_jobs = database["analysis_jobs"]

        self._deals.create_index([("account_id", ASCENDING), ("created_at", DESCENDING)])
        self._scheduled_links.create_index(
            [("account_id", ASCENDING), ("external_id", ASCENDING)],
            unique=True,
        )
        self._meetings.create_index(
            [("account_id", ASCENDING), ("external_id", ASCENDING)],
            unique=True,
            name=MEETINGS_EXTERNAL_ID_INDEX,
        )
        self._meetings.create_index(
            [
                ("account_id", ASCENDING),
                ("title", ASCENDING),
                ("start_time", ASCENDING),
                ("host_email", ASCENDING),
            ],
            unique=True,
            name=MEETINGS_NATURAL_KEY_INDEX,
            partialFilterExpression={
                "title": {"$type": "string"},
                "start_time": {"$type": "date"},
            },
        )
        self._transcripts.create_index(
            [("account_id", ASCENDING), ("meeting_id", ASCENDING), ("sequence_number", ASCENDING)],
        )
        self._highlights.create_index([("account_id", ASCENDING), ("meeting_id", ASCENDING)])
        self._summaries.create_index(
            [("meeting_id", ASCENDING), ("account_id", ASCENDING)],
            unique=True,
        )
        self._analysis_jobs.create_index(
            [("account_id", ASCENDING), ("meeting_id", ASCENDING), ("started_at", DESCENDING)],
        )

    def create_deal(self, *, account_id: str, company_name: str) -> dict[str, Any]:
        now = datetime.now(UTC)
        deal = {
            "_id": _new_id(),
            "account_id": account_id,
            "company_name": company_name.strip(),
            "total_meetings": 0,
            "created_at": now,
            "updated_at": now,
        }
        self._deals.insert_one(deal)
        return deal

    def get_deal(self, *, account_id: str, deal_id: str) -> dict[str, Any] | None:
        return self._deals.find_one({"_id": deal_id, "account_id": account_id})

    def get_latest_deal(self, account_id: str) -> dict[str, Any] | None:
        return self._deals.find_one(
            {"account_id": account_id},
            sort=[("created_at", self._desc), ("_id", self._desc)],
        )

    def update_deal_activity(
        self,
        *,
        account_id: str,
        deal_id: str,
        updates: Mapping[str, Any],
        increment_total_meetings: bool,
    ) -> int:
        operations: dict[str, Any] = {"$set": {**dict(updates), "updated_at": datetime.now(UTC)}}
        if increment_total_meetings:
            operations["$inc"] = {"total_meetings": 1}
        result = self._deals.update_one({"_id": deal_id, "account_id": account_id}, operations)
        return int(result.matched_count)

    def get_scheduled_link(self, *, account_id: str, external_id: str) -> dict[str, Any] | None:
        return self._scheduled_links.find_one({"account_id": account_id, "external_id": external_id})

    def create_scheduled_link(
        self,
        *,
        account_id: str,
        external_id: str,
        deal_id: str,
        title: str,
        start_time: datetime | None,
        end_time: datetime | None,
        attendees: Sequence[str],
        status: ScheduledMeetingStatus = ScheduledMeetingStatus.scheduled,
    ) -> dict[str, Any]:
        from pymongo import ReturnDocument
        from pymongo.errors import DuplicateKeyError

        query = {"account_id": account_id, "external_id": external_id}
        now = datetime.now(UTC)
        try:
            record = self._scheduled_links.find_one_and_update(
                query,
                {
                    "$setOnInsert": {
                        "_id": _new_id(),
                        "deal_id": deal_id,
                        "meeting_title": title,
                        "status": status.value,
                        "start_time": start_time,
                        "end_time": end_time,
                        "attendees": list(attendees),
                        "created_at": now,
                        "updated_at": now,
                    },
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Concurrent upserts on the same key: the loser reads the winner's row.
            record = self._scheduled_links.find_one(query)
        if not record:
            raise RuntimeError("Unable to read scheduled meeting link after upsert.")
        return record

    def complete_scheduled_link(self, *, account_id: str, external_id: str) -> bool:
        result = self._scheduled_links.update_one(
            {
                "account_id": account_id,
                "external_id": external_id,
                "status": ScheduledMeetingStatus.scheduled.value,
            },
            {
                "$set": {
                    "status": ScheduledMeetingStatus.completed.value,
                    "updated_at": datetime.now(UTC),
                },
            },
        )
        return result.modified_count > 0

    def find_meeting_by_external_id(
        self,
        *,
        account_id: str,
        external_id: str,
    ) -> dict[str, Any] | None:
        return self._meetings.find_one({"account_id": account_id, "external_id": external_id})

    def find_meeting_by_natural_key(
        self,
        *,
        account_id: str,
        title: str | None,
        start_time: datetime | None,
        host_email: str | None,
    ) -> dict[str, Any] | None:
        if title is None or start_time is None:
            return None
        return self._meetings.find_one(
            {
                "account_id": account_id,
                "title": title,
                "start_time": start_time,
                "host_email": host_email,
            },
        )

    def insert_meeting(self, record: Mapping[str, Any]) -> str:
        from pymongo.errors import DuplicateKeyError

        payload = dict(record)
        payload["_id"] = _new_id()
        try:
            self._meetings.insert_one(payload)
        except DuplicateKeyError as exc:
            conflict = self._classify_duplicate_key(exc)
            if conflict is None:
                raise
            raise MeetingConflictError(conflict) from exc
        return payload["_id"]

    def update_meeting(
        self,
        *,
        account_id: str,
        meeting_id: str,
        updates: Mapping[str, Any],
    ) -> int:
        result = self._meetings.update_one(
            {"_id": meeting_id, "account_id": account_id},
            {"$set": dict(updates)},
        )
        return int(result.matched_count)

    def get_meeting(self, *, account_id: str, meeting_id: str) -> dict[str, Any] | None:
        return self._meetings.find_one({"_id": meeting_id, "account_id": account_id})

    def list_transcript_segments(self, *, account_id: str, meeting_id: str) -> list[dict[str, Any]]:
        cursor = self._transcripts.find({"account_id": account_id, "meeting_id": meeting_id})
        return list(cursor.sort("sequence_number", 1))

    def delete_transcript_segments(self, *, account_id: str, meeting_id: str) -> int:
        result = self._transcripts.delete_many({"account_id": account_id, "meeting_id": meeting_id})
        return int(result.deleted_count)

    def insert_transcript_segments(self, records: Sequence[Mapping[str, Any]]) -> int:
        return self._insert_batch(self._transcripts, records)

    def delete_highlights(self, *, account_id: str, meeting_id: str) -> int:
        result = self._highlights.delete_many({"account_id": account_id, "meeting_id": meeting_id})
        return int(result.deleted_count)

    def insert_highlights(self, records: Sequence[Mapping[str, Any]]) -> int:
        return self._insert_batch(self._highlights, records)

    def upsert_summary(
        self,
        *,
        account_id: str,
        meeting_id: str,
        summary: str,
        ai_insights: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        query = {"meeting_id": meeting_id, "account_id": account_id}
        now = datetime.now(UTC)
        self._summaries.update_one(
            query,
            {
                "$set": {
                    "summary": summary,
                    "ai_insights": dict(ai_insights) if ai_insights else None,
                    "updated_at": now,
                },
                "$setOnInsert": {"_id": _new_id(), "created_at": now},
            },
            upsert=True,
        )
        return self._summaries.find_one(query) or {}

    def create_analysis_job(
        self,
        *,
        account_id: str,
        meeting_id: str,
        job_type: str,
        model_used: str,
    ) -> str:
        job_id = _new_id()
        self._analysis_jobs.insert_one(
            {
                "_id": job_id,
                "account_id": account_id,
                "meeting_id": meeting_id,
                "job_type": job_type,
                "status": AnalysisJobStatus.processing.value,
                "model_used": model_used,
                "started_at": datetime.now(UTC),
            },
        )
        return job_id

    def _insert_batch(self, collection: Any, records: Sequence[Mapping[str, Any]]) -> int:
        from pymongo.errors import BulkWriteError

        payload = [{"_id": _new_id(), **dict(record)} for record in records]
        if not payload:
            return 0
        try:
            insert_result = collection.insert_many(payload, ordered=True)
        except BulkWriteError as exc:
            raise BatchInsertError(
                f"Batch insert into {collection.name} failed.",
                inserted_count=int(exc.details.get("nInserted", 0)),
            ) from exc
        return len(insert_result.inserted_ids)

    def _classify_duplicate_key(self, exc: Exception) -> MeetingConflict | None:
        details = getattr(exc, "details", None) or {}
        key_pattern = details.get("keyPattern") or {}
        if "external_id" in key_pattern:
            return MeetingConflict.external_id
        if "title" in key_pattern and "start_time" in key_pattern:
            return MeetingConflict.natural_key
        return None


def create_meeting_store(settings: Settings) -> MeetingStore:
    return _create_meeting_store_cached(
        store_name=settings.meetings_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_meeting_store_cached(
    *,
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_connect_timeout_ms: int,
) -> MeetingStore:
    if store_name == "memory":
        return InMemoryMeetingStore()

    if store_name == "mongodb":
        return MongoMeetingStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    # Safety fallback to keep service operational with unknown values.
    return InMemoryMeetingStore()


def clear_meeting_store_cache() -> None:
    _create_meeting_store_cached.cache_clear()
