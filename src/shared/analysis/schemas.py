"""Pydantic schemas and value types for video analysis.

This module defines the analysis mode, the suggestions produced by the
inference engine, and the response document returned by the upload API.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator


class AnalyzerMode(IntEnum):
    """Analysis strategy requested by the client (wire values 0 and 1)."""
    BINARY = 0
    MULTI = 1

    @property
    def description(self) -> str:
        """Human-readable name echoed back as ``analyze_mode``."""
        return self.name.lower()


class UploadMetadata(BaseModel):
    """Schema for the JSON ``metadata`` part of an upload."""
    mode: AnalyzerMode

    @field_validator("mode", mode="before")
    @classmethod
    def _require_integer(cls, value):
        # JSON booleans and floats would otherwise be coerced to 0/1
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("mode must be an integer")
        return value


class Suggestion(BaseModel):
    """A time-windowed content label produced by the inference engine."""
    start: int = Field(ge=0)  # Seconds from the start of the video
    end: int = Field(ge=0)
    suggestion: str

    @model_validator(mode="after")
    def _check_window(self):
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) is before start ({self.start})")
        return self


@dataclass(frozen=True)
class AnalysisOutcome:
    """
    Result of a single engine invocation.

    ``suggestions`` is None when the engine crashed; an empty list means the
    video was analyzed and nothing was flagged.
    """
    suggestions: Optional[List[Suggestion]]

    @classmethod
    def success(cls, suggestions: List[Suggestion]) -> "AnalysisOutcome":
        return cls(suggestions=list(suggestions))

    @classmethod
    def crash(cls) -> "AnalysisOutcome":
        return cls(suggestions=None)

    @property
    def crashed(self) -> bool:
        return self.suggestions is None


@dataclass
class DecodedUpload:
    """An upload split into its validated metadata and raw video bytes."""
    file_name: str
    content: Union[bytes, bytearray]
    metadata: UploadMetadata
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


class UploadResponse(BaseModel):
    """Schema for the /upload response body."""
    file_name: str
    analyze_time: datetime
    analyze_mode: str  # "binary" or "multi"
    suggestions: Optional[List[Suggestion]]

    @field_serializer("analyze_time")
    def _serialize_analyze_time(self, value: datetime) -> str:
        # isoformat keeps the explicit "+00:00" offset instead of "Z"
        return value.isoformat()
