import logging
from datetime import UTC, datetime
from typing import Any

from app.core.config import Settings
from app.schemas.meeting_sync import JobDispatchReport, MeetingSyncReport, NotificationOutcome
from app.services.analysis_job_dispatcher import AnalysisJobDispatcher
from app.services.meetgeek_api_client import MeetGeekApiClient
from app.services.meeting_artifact_replacer import DEFAULT_MEETING_NOTES, MeetingArtifactReplacer
from app.services.meeting_models import MeetingBundle
from app.services.meeting_resolver import MeetingResolver, ResolvedMeeting
from app.services.meeting_source_adapter import MeetingSourceAdapter
from app.services.meeting_store import MeetingStore, create_meeting_store
from app.services.meeting_sync_errors import MeetingSyncError, SourceNotConfiguredError
from app.services.transcript_notifier import TranscriptNotifier

logger = logging.getLogger(__name__)

LAST_MEETING_TYPE = "meetgeek"


class MeetingSyncService:
    """
    Runs one ingestion: Fetching -> Reconciling -> Replacing -> Dispatching ->
    Notifying. Only fetch and reconcile failures abort the run; everything
    after the meeting row exists is best effort and shows up in the report.
    """

    def __init__(
        self,
        settings: Settings,
        store: MeetingStore | None = None,
        source_adapter: MeetingSourceAdapter | None = None,
        resolver: MeetingResolver | None = None,
        replacer: MeetingArtifactReplacer | None = None,
        dispatcher: AnalysisJobDispatcher | None = None,
        notifier: TranscriptNotifier | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or create_meeting_store(settings)
        self.source_adapter = source_adapter or self._create_source_adapter()
        self.resolver = resolver or MeetingResolver(self.store)
        self.replacer = replacer or MeetingArtifactReplacer(
            self.store,
            batch_size=settings.transcript_insert_batch_size,
            placeholder_texts=settings.summary_placeholder_texts,
        )
        self.dispatcher = dispatcher or AnalysisJobDispatcher(
            self.store,
            model_used=settings.analysis_job_model,
        )
        self.notifier = notifier or TranscriptNotifier(
            webhook_url=settings.transcript_processor_webhook_url,
            analysis_trigger_url=settings.analysis_trigger_url,
            webhook_timeout_seconds=settings.transcript_processor_timeout_seconds,
            analysis_trigger_timeout_seconds=settings.analysis_trigger_timeout_seconds,
        )

    def sync_meeting(self, *, account_id: str, external_id: str) -> MeetingSyncReport:
        account_id = account_id.strip()
        external_id = external_id.strip()
        logger.info("Meeting sync started account_id=%s external_id=%s", account_id, external_id)
        try:
            report = self._run(account_id=account_id, external_id=external_id)
        except MeetingSyncError as exc:
            exc.with_context(account_id=account_id, external_id=external_id)
            logger.warning(
                "Meeting sync failed step=%s account_id=%s external_id=%s error=%s details=%s",
                exc.step,
                account_id,
                external_id,
                exc.error,
                exc.details,
            )
            raise

        logger.info(
            "Meeting sync completed account_id=%s external_id=%s meeting_id=%s was_new_meeting=%s "
            "transcripts=%s/%s highlights=%s has_summary=%s jobs=%s/%s notification=%s degraded=%s",
            account_id,
            external_id,
            report.meeting_id,
            report.was_new_meeting,
            report.transcript_segments_stored,
            report.transcript_segments_fetched,
            report.highlights_stored,
            report.has_summary,
            report.job_dispatch_report.success_count,
            report.job_dispatch_report.total,
            report.notification_outcome.value,
            len(report.degraded),
        )
        return report

    def _run(self, *, account_id: str, external_id: str) -> MeetingSyncReport:
        self._log_step("fetching", account_id, external_id)
        if not self.source_adapter:
            raise SourceNotConfiguredError(
                "Please add MEETGEEK_API_KEY to your environment variables.",
            )
        bundle = self.source_adapter.fetch_meeting_bundle(external_id)
        degraded = list(bundle.degraded)

        self._log_step("reconciling", account_id, external_id)
        resolved = self.resolver.reconcile(account_id=account_id, metadata=bundle.metadata)

        self._log_step("replacing", account_id, external_id)
        transcript_result = self.replacer.replace_transcript(
            account_id=account_id,
            meeting_id=resolved.meeting_id,
            segments=bundle.transcript_segments,
        )
        highlights_result = self.replacer.replace_highlights(
            account_id=account_id,
            meeting_id=resolved.meeting_id,
            highlights=bundle.highlights,
        )
        summary_result = self.replacer.upsert_summary(
            account_id=account_id,
            meeting_id=resolved.meeting_id,
            summary_text=bundle.summary_text,
            summary_payload=bundle.summary_payload,
        )
        degraded.extend(transcript_result.errors)
        degraded.extend(highlights_result.errors)
        degraded.extend(summary_result.errors)

        self._log_step("dispatching", account_id, external_id)
        if bundle.transcript_segments:
            job_dispatch_report = self.dispatcher.dispatch_analysis_jobs(
                account_id=account_id,
                meeting_id=resolved.meeting_id,
            )
            degraded.extend(
                f"{item.job_type.value}_job_failed: {item.error}"
                for item in job_dispatch_report.items
                if not item.success
            )
        else:
            job_dispatch_report = self.dispatcher.skipped()

        deal_updated = self._record_deal_activity(
            account_id=account_id,
            resolved=resolved,
            bundle=bundle,
            job_dispatch_report=job_dispatch_report,
            degraded=degraded,
        )

        self._log_step("notifying", account_id, external_id)
        if self._count_live_segments(account_id, resolved.meeting_id, transcript_result.stored_count):
            notification_outcome = self.notifier.notify_transcript_ready(
                meeting_id=resolved.meeting_id,
                deal_id=resolved.deal_id,
                account_id=account_id,
            )
            if notification_outcome == NotificationOutcome.fallback_failed:
                degraded.append("notification_failed")
        else:
            notification_outcome = NotificationOutcome.skipped

        return MeetingSyncReport(
            account_id=account_id,
            external_id=external_id,
            meeting_id=resolved.meeting_id,
            deal_id=resolved.deal_id,
            scheduled_link_id=self._to_optional_str(resolved.scheduled_link.get("_id")),
            title=resolved.title,
            was_new_meeting=resolved.was_created,
            transcript_segments_fetched=transcript_result.fetched_count,
            transcript_segments_stored=transcript_result.stored_count,
            highlights_fetched=highlights_result.fetched_count,
            highlights_stored=highlights_result.stored_count,
            has_summary=summary_result.stored,
            deal_updated=deal_updated,
            job_dispatch_report=job_dispatch_report,
            notification_outcome=notification_outcome,
            degraded=degraded,
            synced_at=datetime.now(UTC),
        )

    def _record_deal_activity(
        self,
        *,
        account_id: str,
        resolved: ResolvedMeeting,
        bundle: MeetingBundle,
        job_dispatch_report: JobDispatchReport,
        degraded: list[str],
    ) -> bool:
        now = datetime.now(UTC)
        updates: dict[str, Any] = {
            "last_meeting_date": bundle.metadata.start_time or now,
            "last_meeting_type": LAST_MEETING_TYPE,
            "last_updated": now,
        }
        if bundle.highlights:
            updates["meeting_highlights"] = list(bundle.highlights)
        if self.replacer.is_meaningful_summary(bundle.summary_text):
            updates["last_meeting_summary"] = bundle.summary_text
            updates["last_meeting_notes"] = bundle.summary_text
        elif bundle.summary_text:
            updates["last_meeting_notes"] = bundle.summary_text
        if job_dispatch_report.success_count > 0:
            updates["last_analysis_date"] = now

        try:
            if not bundle.summary_text and not self._deal_has_notes(account_id, resolved.deal_id):
                updates["last_meeting_notes"] = DEFAULT_MEETING_NOTES
            matched_count = self.store.update_deal_activity(
                account_id=account_id,
                deal_id=resolved.deal_id,
                updates=updates,
                increment_total_meetings=resolved.was_created,
            )
        except Exception as exc:
            logger.warning(
                "Deal activity update failed account_id=%s deal_id=%s error=%s",
                account_id,
                resolved.deal_id,
                exc,
            )
            degraded.append(f"deal_update_failed: {exc}")
            return False
        return matched_count > 0

    def _deal_has_notes(self, account_id: str, deal_id: str) -> bool:
        deal = self.store.get_deal(account_id=account_id, deal_id=deal_id)
        return bool(deal and deal.get("last_meeting_notes"))

    def _count_live_segments(self, account_id: str, meeting_id: str, stored_count: int) -> int:
        try:
            return len(self.store.list_transcript_segments(account_id=account_id, meeting_id=meeting_id))
        except Exception as exc:
            logger.warning(
                "Stored transcript count unavailable meeting_id=%s error=%s",
                meeting_id,
                exc,
            )
            return stored_count

    def _create_source_adapter(self) -> MeetingSourceAdapter | None:
        if not self.settings.meetgeek_api_key:
            return None
        return MeetingSourceAdapter(
            MeetGeekApiClient(
                api_url=self.settings.meetgeek_api_url,
                api_key=self.settings.meetgeek_api_key,
                timeout_seconds=self.settings.meetgeek_api_timeout_seconds,
                user_agent=self.settings.meetgeek_api_user_agent,
            ),
        )

    def _log_step(self, step: str, account_id: str, external_id: str) -> None:
        logger.debug("Meeting sync step=%s account_id=%s external_id=%s", step, account_id, external_id)

    def _to_optional_str(self, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)
