"""Notifications the core sends to the presentation layer.

The core only emits these; it never reads UI state back.

- capture.completed: a requested capture landed in the result store
- capture.failed: capture could not be performed (reason is user-facing)
- suggestions.updated: a new batch should be shown
- suggestions.cleared: the shown batch expired or was reset
"""
from __future__ import annotations

from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field


PresentationKind = Literal[
    "capture.completed",
    "capture.failed",
    "suggestions.updated",
    "suggestions.cleared",
]


class PresentationEvent(BaseModel):
    v: int = 1
    ts: str
    kind: PresentationKind
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")
