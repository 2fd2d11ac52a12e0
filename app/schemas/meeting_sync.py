from datetime import datetime
from enum import StrEnum

from pydantic import AliasChoices, BaseModel, Field


class SourcePlatform(StrEnum):
    meetgeek = "meetgeek"
    manual = "manual"
    calendar = "calendar"
    google_meet = "google_meet"


class ScheduledMeetingStatus(StrEnum):
    scheduled = "scheduled"
    completed = "completed"


class AnalysisJobType(StrEnum):
    summary = "summary"
    highlights = "highlights"
    actions = "actions"


class AnalysisJobStatus(StrEnum):
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"


class NotificationOutcome(StrEnum):
    delivered = "delivered"
    fallback_delivered = "fallback_delivered"
    fallback_failed = "fallback_failed"
    skipped = "skipped"


class MeetingSyncRequest(BaseModel):
    account_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("account_id", "accountId"),
    )
    external_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("external_id", "externalId", "meeting_id", "meetingId"),
    )


class AnalysisJobDispatchItem(BaseModel):
    job_type: AnalysisJobType
    success: bool
    job_id: str | None = None
    error: str | None = None


class JobDispatchReport(BaseModel):
    status: str = "dispatched"
    items: list[AnalysisJobDispatchItem] = Field(default_factory=list)
    success_count: int = 0
    total: int = 0


class MeetingSyncReport(BaseModel):
    status: str = "completed"
    account_id: str
    external_id: str
    meeting_id: str
    deal_id: str | None = None
    scheduled_link_id: str | None = None
    title: str | None = None
    was_new_meeting: bool
    transcript_segments_fetched: int
    transcript_segments_stored: int
    highlights_fetched: int
    highlights_stored: int
    has_summary: bool
    deal_updated: bool
    job_dispatch_report: JobDispatchReport
    notification_outcome: NotificationOutcome
    degraded: list[str] = Field(default_factory=list)
    synced_at: datetime


class MeetingSyncErrorResponse(BaseModel):
    error: str
    details: str | None = None
    step: str | None = None
    account_id: str | None = None
    external_id: str | None = None
