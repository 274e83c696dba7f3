"""Report lifecycle schemas."""

import enum
from datetime import datetime

from pydantic import BaseModel, Field


class ReportFormat(str, enum.Enum):
    PDF = "pdf"
    EXCEL = "excel"


class ReportArtifact(BaseModel):
    report_id: str
    file_name: str
    user_id: str
    project_id: str
    format: ReportFormat
    mime_type: str
    generated_at: datetime
    expires_at: datetime

    @property
    def key(self) -> str:
        return f"{self.report_id}/{self.file_name}"


class ReportCleanupResult(BaseModel):
    total_scanned: int = 0
    total_deleted: int = 0
    deleted_reports: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
