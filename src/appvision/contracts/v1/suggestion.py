from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DisplayStatus = Literal["hidden", "ready", "processing", "displayed"]
SuggestionPriority = Literal["high", "medium", "low"]

FORMAT_VERSION = "1.0"


class SuggestionFlag(BaseModel):
    """flags/suggestion_flag.json: the signal half of a suggestion batch."""

    suggestion_ready: bool = False
    last_update: str = ""
    suggestion_id: Optional[str] = None
    display_status: DisplayStatus = "hidden"
    auto_clear: bool = True
    file_path: Optional[str] = None
    template_reset: Optional[bool] = None
    reset_timestamp: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class SuggestionItem(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    priority: SuggestionPriority = "medium"
    id: Optional[str] = None
    category: Optional[str] = None
    actionable_steps: List[str] = Field(default_factory=list)
    estimated_time: Optional[str] = None
    benefit: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class SuggestionMetadata(BaseModel):
    timestamp: str = ""
    format_version: str = FORMAT_VERSION
    suggestion_id: str = ""

    model_config = ConfigDict(extra="allow")


class SuggestionData(BaseModel):
    """suggestions/ai_suggestions.json: the payload half, written before the flag."""

    metadata: Optional[SuggestionMetadata] = None
    suggestions: List[SuggestionItem]

    model_config = ConfigDict(extra="allow")

    @field_validator("suggestions")
    @classmethod
    def _non_empty(cls, v: List[SuggestionItem]) -> List[SuggestionItem]:
        if not v:
            raise ValueError("suggestions must not be empty")
        return v

    def items_as_dicts(self) -> List[Dict[str, Any]]:
        return [s.model_dump(exclude_none=True) for s in self.suggestions]
