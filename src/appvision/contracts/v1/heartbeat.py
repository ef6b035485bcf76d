from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


HeartbeatStatus = Literal["active", "shutdown"]


class HeartbeatRecord(BaseModel):
    """Liveness record the interactive process overwrites in place."""

    timestamp: str
    status: HeartbeatStatus = "active"
    pid: int = 0
    uptime: float = 0.0
    version: str = ""
    services: Dict[str, bool] = Field(default_factory=dict)
    reason: Optional[str] = None

    model_config = ConfigDict(extra="ignore")
