from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

REQUIRED_FIELDS = (
    "submitterName",
    "submitterEmail",
    "abstractTitle",
    "abstractType",
    "theme",
    "company",
    "discipline",
    "authorNames",
    "abstractContent",
)

PROTECTED_FIELDS = ("uniqueID", "createdAt")


class AbstractType(str, Enum):
    TECHNICAL_PAPER = "technical-paper"
    POSTER = "poster"


@dataclass
class StoredSubmission:
    """A submission document as persisted, including storage metadata."""

    record_id: str
    unique_id: int
    created_at: datetime
    updated_at: datetime
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_view(self) -> "SubmissionView":
        return SubmissionView(
            **{name: self.fields.get(name, "") for name in REQUIRED_FIELDS},
            uniqueID=self.unique_id,
            createdAt=self.created_at,
        )


class SubmissionView(BaseModel):
    submitterName: str
    submitterEmail: str
    abstractTitle: str
    abstractType: str
    theme: str
    company: str
    discipline: str
    authorNames: str
    abstractContent: str
    uniqueID: int
    createdAt: datetime


class SubmitResponse(BaseModel):
    message: str
    uniqueID: int


class UpdateResponse(BaseModel):
    message: str
    updatedSubmission: SubmissionView


class ErrorResponse(BaseModel):
    error: str


class MailSettings(BaseModel):
    transport: str = "smtp"
    user: str
    password: Optional[str] = None
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    aws_region: Optional[str] = None
    admin_email: str


class ServerSettings(BaseModel):
    port: int = 3000
    edit_view: str = "json"
    public_base_url: Optional[str] = None
    static_dir: Optional[str] = None
    cors_origins: List[str] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


class Settings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database_url: str
    mail: MailSettings
    server: ServerSettings = ServerSettings()
    edit_deadline: str = "2024-12-31"
    log_level: str = "INFO"
    notification_workers: int = 2
