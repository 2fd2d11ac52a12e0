from __future__ import annotations

from fastapi import status


class MeetingSyncError(Exception):
    """
    Fatal pipeline failure. Carries the step that failed and enough context
    for the caller to retry the same (account_id, external_id) later.
    """

    step = "unknown"
    error = "Meeting sync failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        details: str,
        *,
        account_id: str | None = None,
        external_id: str | None = None,
    ) -> None:
        super().__init__(details)
        self.details = details
        self.account_id = account_id
        self.external_id = external_id

    def with_context(
        self,
        *,
        account_id: str | None = None,
        external_id: str | None = None,
    ) -> MeetingSyncError:
        self.account_id = self.account_id or account_id
        self.external_id = self.external_id or external_id
        return self

    def to_payload(self) -> dict[str, str | None]:
        return {
            "error": self.error,
            "details": self.details,
            "step": self.step,
            "account_id": self.account_id,
            "external_id": self.external_id,
        }


class SourceNotConfiguredError(MeetingSyncError):
    step = "fetching"
    error = "MeetGeek API key not configured"


class MeetingNotReadyError(MeetingSyncError):
    step = "fetching"
    error = "Meeting not found in MeetGeek"
    status_code = status.HTTP_404_NOT_FOUND


class MetadataFetchError(MeetingSyncError):
    step = "fetching"
    error = "Failed to fetch meeting from MeetGeek"
    status_code = status.HTTP_502_BAD_GATEWAY


class NoLinkableDealError(MeetingSyncError):
    step = "reconciling"
    error = "No deals found to link meeting"
    status_code = status.HTTP_404_NOT_FOUND


class DealAccountMismatchError(MeetingSyncError):
    step = "reconciling"
    error = "Deal not found or inaccessible - cannot link transcript"
    status_code = status.HTTP_409_CONFLICT


class MeetingReconciliationError(MeetingSyncError):
    step = "reconciling"
    error = "Meeting record creation failed"
