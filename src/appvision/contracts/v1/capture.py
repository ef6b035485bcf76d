from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


AnalysisType = Literal["basic", "detailed"]
CaptureKind = Literal["screen", "window", "fullscreen"]


class CaptureRequest(BaseModel):
    """Mailbox record: flags/capture-request.flag."""

    request_id: str = Field(alias="requestId", min_length=1)
    analysis_type: AnalysisType = Field(default="basic", alias="analysisType")
    save_to_history: bool = Field(default=True, alias="saveToHistory")
    timestamp: str = ""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ProcessingLock(BaseModel):
    """Advisory marker: flags/processing.lock. Present only while a claim is serviced."""

    timestamp: str
    type: str = "auto-capture"
    pid: int = 0

    model_config = ConfigDict(extra="ignore")


class CaptureMetadata(BaseModel):
    """Written next to current/screenshot.png; its presence marks the pair complete."""

    timestamp: str
    type: CaptureKind
    source_name: str = Field(default="", alias="sourceName")
    app_name: str = Field(default="unknown", alias="appName")
    file_name: str = Field(default="", alias="fileName")
    file_path: str = Field(default="", alias="filePath")
    size: int = 0
    format: str = "png"
    request_id: Optional[str] = Field(default=None, alias="requestId")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)
