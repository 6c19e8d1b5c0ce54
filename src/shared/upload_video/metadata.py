"""
Validates the JSON control block sent alongside an uploaded video
"""

from pydantic import ValidationError

from src.shared.analysis.exceptions import InvalidMetadata, UnsupportedMode
from src.shared.analysis.schemas import AnalyzerMode, UploadMetadata


def _describe_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "metadata"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def parse_metadata(raw: bytes) -> UploadMetadata:
    """
    Parses metadata bytes as ``{"mode": <integer>}``.
    Raises InvalidMetadata for invalid JSON, a missing or non-integer mode,
    or a mode outside {0, 1}.
    """
    try:
        return UploadMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidMetadata(f"Invalid metadata: {_describe_errors(e)}") from e


def validate_metadata(raw: bytes) -> UploadMetadata:
    """
    Parses metadata and rejects modes that cannot be analyzed yet.
    Binary mode is refused here so it never reaches the inference engine.
    """
    metadata = parse_metadata(raw)
    if metadata.mode is AnalyzerMode.BINARY:
        raise UnsupportedMode("Binary analysis mode is not available yet")
    return metadata
