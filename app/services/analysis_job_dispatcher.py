from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from app.schemas.meeting_sync import AnalysisJobDispatchItem, AnalysisJobType, JobDispatchReport
from app.services.meeting_store import MeetingStore

logger = logging.getLogger(__name__)

ANALYSIS_JOB_TYPES: tuple[AnalysisJobType, ...] = (
    AnalysisJobType.summary,
    AnalysisJobType.highlights,
    AnalysisJobType.actions,
)


class AnalysisJobDispatcher:
    """
    Creates one "processing" job record per analysis type. The analysis itself
    runs elsewhere once the downstream processor picks the jobs up.
    """

    def __init__(self, store: MeetingStore, *, model_used: str = "gpt-4") -> None:
        self.store = store
        self.model_used = model_used

    def dispatch_analysis_jobs(self, *, account_id: str, meeting_id: str) -> JobDispatchReport:
        with ThreadPoolExecutor(
            max_workers=len(ANALYSIS_JOB_TYPES),
            thread_name_prefix="analysis-job",
        ) as executor:
            futures = {
                job_type: executor.submit(
                    self.store.create_analysis_job,
                    account_id=account_id,
                    meeting_id=meeting_id,
                    job_type=job_type.value,
                    model_used=self.model_used,
                )
                for job_type in ANALYSIS_JOB_TYPES
            }

            items: list[AnalysisJobDispatchItem] = []
            for job_type, future in futures.items():
                try:
                    job_id = future.result()
                except Exception as exc:
                    logger.warning(
                        "Analysis job creation failed job_type=%s meeting_id=%s error=%s",
                        job_type.value,
                        meeting_id,
                        exc,
                    )
                    items.append(
                        AnalysisJobDispatchItem(job_type=job_type, success=False, error=str(exc)),
                    )
                    continue
                items.append(AnalysisJobDispatchItem(job_type=job_type, success=True, job_id=job_id))

        return JobDispatchReport(
            status="dispatched",
            items=items,
            success_count=sum(1 for item in items if item.success),
            total=len(items),
        )

    def skipped(self) -> JobDispatchReport:
        return JobDispatchReport(status="skipped_no_transcript")
