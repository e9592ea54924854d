from datetime import UTC, datetime

from app.core.config import Settings
from app.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings, *, ai_configured: bool) -> None:
        self.settings = settings
        self.ai_configured = ai_configured

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=self.settings.app_name,
            version=self.settings.app_version,
            environment=self.settings.app_env,
            document_store=self.settings.document_store,
            ai_configured=self.ai_configured,
            timestamp=datetime.now(UTC),
        )
