from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    meetings_store: str
    meetgeek_configured: bool
    transcript_webhook_configured: bool
    timestamp: datetime
