"""
Builds the /upload response document from an analysis outcome.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from src.shared.analysis.schemas import AnalysisOutcome, AnalyzerMode, UploadResponse


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def assemble_response(
    file_name: str,
    mode: AnalyzerMode,
    outcome: AnalysisOutcome,
    clock: Optional[Callable[[], datetime]] = None
) -> UploadResponse:
    """
    Assemble the response for a finished analysis.

    The timestamp is taken here, when analysis has completed, and normalised
    to UTC. A crashed outcome yields ``suggestions=None``, never an empty list.
    """
    analyze_time = (clock or utc_now)().astimezone(timezone.utc)
    suggestions = None if outcome.crashed else list(outcome.suggestions)

    return UploadResponse(
        file_name=file_name,
        analyze_time=analyze_time,
        analyze_mode=mode.description,
        suggestions=suggestions
    )
