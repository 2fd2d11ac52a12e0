from app.schemas.meeting_sync import AnalysisJobType
from app.services.analysis_job_dispatcher import AnalysisJobDispatcher
from app.services.meeting_store import InMemoryMeetingStore


def _stored_jobs(store: InMemoryMeetingStore, *, account_id: str, meeting_id: str) -> list[dict]:
    return [
        job
        for job in store._analysis_jobs
        if job["account_id"] == account_id and job["meeting_id"] == meeting_id
    ]


class _FlakyJobStore(InMemoryMeetingStore):
    def __init__(self, failing_job_type: str) -> None:
        super().__init__()
        self._failing_job_type = failing_job_type

    def create_analysis_job(self, *, account_id: str, meeting_id: str, job_type: str, model_used: str) -> str:
        if job_type == self._failing_job_type:
            raise RuntimeError("insert rejected")
        return super().create_analysis_job(
            account_id=account_id,
            meeting_id=meeting_id,
            job_type=job_type,
            model_used=model_used,
        )


def test_dispatch_creates_one_processing_job_per_type() -> None:
    store = InMemoryMeetingStore()
    dispatcher = AnalysisJobDispatcher(store, model_used="gpt-4")

    report = dispatcher.dispatch_analysis_jobs(account_id="account-1", meeting_id="meeting-row")

    assert report.status == "dispatched"
    assert report.success_count == 3
    assert report.total == 3
    assert [item.job_type for item in report.items] == [
        AnalysisJobType.summary,
        AnalysisJobType.highlights,
        AnalysisJobType.actions,
    ]
    jobs = _stored_jobs(store, account_id="account-1", meeting_id="meeting-row")
    assert sorted(job["job_type"] for job in jobs) == ["actions", "highlights", "summary"]
    assert {job["status"] for job in jobs} == {"processing"}
    assert {job["model_used"] for job in jobs} == {"gpt-4"}
    assert {item.job_id for item in report.items} == {job["_id"] for job in jobs}


def test_one_failed_job_does_not_cancel_the_others() -> None:
    store = _FlakyJobStore(failing_job_type="highlights")

    report = AnalysisJobDispatcher(store).dispatch_analysis_jobs(account_id="account-1", meeting_id="meeting-row")

    assert report.success_count == 2
    assert report.total == 3
    failed = [item for item in report.items if not item.success]
    assert len(failed) == 1
    assert failed[0].job_type == AnalysisJobType.highlights
    assert failed[0].error == "insert rejected"
    assert failed[0].job_id is None
    assert len(_stored_jobs(store, account_id="account-1", meeting_id="meeting-row")) == 2


def test_skipped_report_has_no_items() -> None:
    report = AnalysisJobDispatcher(InMemoryMeetingStore()).skipped()

    assert report.status == "skipped_no_transcript"
    assert report.items == []
    assert report.success_count == 0
    assert report.total == 0
