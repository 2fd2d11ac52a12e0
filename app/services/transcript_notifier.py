from __future__ import annotations

import http.client
import json
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any
from urllib import error, parse, request

from app.schemas.meeting_sync import NotificationOutcome

logger = logging.getLogger(__name__)

TRANSCRIPT_CREATED_EVENT = "transcript_created"


class TranscriptNotificationError(Exception):
    pass


class TranscriptNotifier:
    """
    Tells the downstream processor a transcript is ready. The webhook is tried
    first; any failure falls back to calling the analysis trigger directly.
    Notification is advisory, so this never raises to the caller.
    """

    def __init__(
        self,
        *,
        webhook_url: str,
        analysis_trigger_url: str,
        webhook_timeout_seconds: float = 10.0,
        analysis_trigger_timeout_seconds: float = 30.0,
        fallback: Callable[..., None] | None = None,
        user_agent: str = "MeetingSyncBackend/1.0",
    ) -> None:
        self.webhook_url = webhook_url.strip()
        self.analysis_trigger_url = analysis_trigger_url.strip()
        self.webhook_timeout_seconds = webhook_timeout_seconds
        self.analysis_trigger_timeout_seconds = analysis_trigger_timeout_seconds
        self.fallback = fallback or self.trigger_analysis
        self.user_agent = user_agent

    def notify_transcript_ready(
        self,
        *,
        meeting_id: str,
        deal_id: str | None,
        account_id: str,
    ) -> NotificationOutcome:
        try:
            self.post_webhook(meeting_id=meeting_id, deal_id=deal_id, account_id=account_id)
            return NotificationOutcome.delivered
        except TranscriptNotificationError as exc:
            logger.warning(
                "Transcript webhook failed, trying direct analysis meeting_id=%s error=%s",
                meeting_id,
                exc,
            )

        try:
            self.fallback(meeting_id=meeting_id, account_id=account_id)
        except Exception as exc:
            logger.error(
                "Direct analysis fallback failed meeting_id=%s account_id=%s error=%s",
                meeting_id,
                account_id,
                exc,
            )
            return NotificationOutcome.fallback_failed
        return NotificationOutcome.fallback_delivered

    def post_webhook(self, *, meeting_id: str, deal_id: str | None, account_id: str) -> None:
        if not self.webhook_url:
            raise TranscriptNotificationError("Transcript processor webhook URL is not configured.")
        self._post_json(
            self.webhook_url,
            {
                "meeting_id": meeting_id,
                "deal_id": deal_id,
                "account_id": account_id,
                "event_type": TRANSCRIPT_CREATED_EVENT,
                "timestamp": datetime.now(UTC).isoformat(),
            },
            timeout_seconds=self.webhook_timeout_seconds,
        )

    def trigger_analysis(self, *, meeting_id: str, account_id: str) -> None:
        if not self.analysis_trigger_url:
            raise TranscriptNotificationError("Analysis trigger URL is not configured.")
        separator = "&" if "?" in self.analysis_trigger_url else "?"
        target_url = (
            f"{self.analysis_trigger_url}{separator}{parse.urlencode({'accountId': account_id})}"
        )
        self._post_json(
            target_url,
            {"meetingId": meeting_id, "accountId": account_id},
            timeout_seconds=self.analysis_trigger_timeout_seconds,
        )

    def _post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        timeout_seconds: float,
    ) -> None:
        req = request.Request(
            url,
            data=json.dumps(dict(payload)).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": self.user_agent,
            },
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=timeout_seconds) as response:
                response.read()
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise TranscriptNotificationError(
                f"HTTP {exc.code} from {url}: {body or 'empty response body'}",
            ) from exc
        except error.URLError as exc:
            raise TranscriptNotificationError(f"Connection error to {url}: {exc.reason}") from exc
        except TimeoutError as exc:
            raise TranscriptNotificationError(
                f"Request to {url} timed out after {timeout_seconds}s.",
            ) from exc
        except (OSError, http.client.HTTPException) as exc:
            # Resets and truncated bodies are raised outside urllib's URLError.
            raise TranscriptNotificationError(f"Connection to {url} failed: {exc!r}") from exc
        except ValueError as exc:
            raise TranscriptNotificationError(f"Invalid notification URL {url!r}: {exc}") from exc
