from __future__ import annotations

from .capture import AnalysisType, CaptureKind, CaptureMetadata, CaptureRequest, ProcessingLock
from .heartbeat import HeartbeatRecord, HeartbeatStatus
from .notify import PresentationEvent, PresentationKind
from .suggestion import (
    FORMAT_VERSION,
    DisplayStatus,
    SuggestionData,
    SuggestionFlag,
    SuggestionItem,
    SuggestionMetadata,
    SuggestionPriority,
)

__all__ = [
    "AnalysisType",
    "CaptureKind",
    "CaptureMetadata",
    "CaptureRequest",
    "DisplayStatus",
    "FORMAT_VERSION",
    "HeartbeatRecord",
    "HeartbeatStatus",
    "PresentationEvent",
    "PresentationKind",
    "ProcessingLock",
    "SuggestionData",
    "SuggestionFlag",
    "SuggestionItem",
    "SuggestionMetadata",
    "SuggestionPriority",
]
