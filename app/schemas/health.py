from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    version: str
    environment: str
    document_store: str
    ai_configured: bool
    timestamp: datetime
