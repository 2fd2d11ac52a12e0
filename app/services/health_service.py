from datetime import UTC, datetime

from app.core.config import Settings
from app.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            status="ok" if self.settings.meetgeek_api_key else "degraded",
            service=self.settings.app_name,
            meetings_store=self.settings.meetings_store,
            meetgeek_configured=bool(self.settings.meetgeek_api_key),
            transcript_webhook_configured=bool(self.settings.transcript_processor_webhook_url.strip()),
            timestamp=datetime.now(UTC),
        )
