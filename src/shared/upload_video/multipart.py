"""
Splits a multipart/form-data upload into its metadata and file parts.

The body is fed chunk by chunk through python-multipart's streaming parser so
that oversized uploads are rejected as soon as they cross the configured
limit, not after the whole body has been buffered.
"""

import logging
from typing import AsyncIterable, Dict, List, Optional

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from src.shared.analysis.exceptions import MalformedRequest, PayloadTooLarge
from src.shared.analysis.schemas import DecodedUpload
from src.shared.upload_video.metadata import validate_metadata

logger = logging.getLogger(__name__)

METADATA_FIELD = "metadata"
FILE_FIELD = "file"
METADATA_CONTENT_TYPE = "application/json"
PLACEHOLDER_FILE_NAME = "_anonymous"
MAX_METADATA_BYTES = 64 * 1024


class _Part:
    """Headers and body collected for one multipart part."""

    def __init__(self):
        self.headers: Dict[str, str] = {}
        self.name: Optional[str] = None
        self.filename: Optional[str] = None
        self.content_type: Optional[str] = None
        self.data = bytearray()


class _PartCollector:
    """
    Receives python-multipart callbacks and keeps every completed part.

    Callbacks never raise; a problem is recorded in ``error`` and checked by
    the decoder after each write.
    """

    def __init__(self):
        self.parts: List[_Part] = []
        self.error: Optional[MalformedRequest] = None
        self.finished = False
        self._current: Optional[_Part] = None
        self._field = bytearray()
        self._value = bytearray()

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self._on_part_begin,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
            "on_end": self._on_end,
        }

    def _fail(self, message: str):
        if self.error is None:
            self.error = MalformedRequest(message)

    def _on_part_begin(self):
        self._current = _Part()

    def _on_header_field(self, data: bytes, start: int, end: int):
        self._field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int):
        self._value += data[start:end]

    def _on_header_end(self):
        name = bytes(self._field).decode("latin-1").strip().lower()
        # Raw header bytes survive latin-1; parse_options_header encodes back to them
        self._current.headers[name] = bytes(self._value).decode("latin-1").strip()
        self._field.clear()
        self._value.clear()

    def _on_headers_finished(self):
        part = self._current
        disposition = part.headers.get("content-disposition")
        if not disposition:
            self._fail("Multipart part is missing a Content-Disposition header")
            return
        _, options = parse_options_header(disposition)
        name = options.get(b"name")
        if name is None:
            self._fail("Multipart part has no field name")
            return
        part.name = name.decode("utf-8", errors="replace")
        filename = options.get(b"filename")
        if filename is not None:
            part.filename = filename.decode("utf-8", errors="replace")
        if "content-type" in part.headers:
            essence, _ = parse_options_header(part.headers["content-type"])
            part.content_type = essence.decode("latin-1").strip().lower()

    def _on_part_data(self, data: bytes, start: int, end: int):
        part = self._current
        if part is None or self.error is not None:
            return
        if part.name == METADATA_FIELD and len(part.data) + (end - start) > MAX_METADATA_BYTES:
            self._fail(f"Metadata part exceeds {MAX_METADATA_BYTES} bytes")
            return
        part.data += data[start:end]

    def _on_part_end(self):
        if self._current is not None:
            self.parts.append(self._current)
        self._current = None

    def _on_end(self):
        self.finished = True


def get_boundary(content_type: Optional[str]) -> bytes:
    """
    Extracts the multipart boundary from a request Content-Type header.
    Raises MalformedRequest if the request is not multipart/form-data.
    """
    if not content_type:
        raise MalformedRequest("Missing Content-Type header")
    essence, params = parse_options_header(content_type)
    if essence.strip().lower() != b"multipart/form-data":
        raise MalformedRequest(
            f"Content-Type must be multipart/form-data, got {essence.decode('latin-1') or 'nothing'}"
        )
    boundary = params.get(b"boundary")
    if not boundary:
        raise MalformedRequest("Multipart Content-Type has no boundary")
    return boundary


class MultipartDecoder:
    """
    Decodes an upload body into a DecodedUpload.

    Args:
        max_body_size: Upper bound on the request body in bytes, or None for
            no limit. Checked against the declared Content-Length before any
            byte is read, and again while the body streams in.
    """

    def __init__(self, max_body_size: Optional[int] = None):
        self.max_body_size = max_body_size

    def check_declared_size(self, content_length: Optional[str]) -> None:
        """Rejects a body whose declared length is already over the limit."""
        if content_length is None or self.max_body_size is None:
            return
        try:
            declared = int(content_length)
        except ValueError:
            raise MalformedRequest(f"Invalid Content-Length: {content_length!r}")
        if declared > self.max_body_size:
            raise PayloadTooLarge(
                f"Request body of {declared} bytes exceeds the limit of {self.max_body_size} bytes"
            )

    async def decode(
        self,
        chunks: AsyncIterable[bytes],
        content_type: Optional[str],
        content_length: Optional[str] = None
    ) -> DecodedUpload:
        """
        Reads the whole body and returns the decoded upload.

        Raises:
            MalformedRequest: wrong content type, broken multipart framing,
                or anything other than exactly one metadata and one file part
            PayloadTooLarge: the body exceeds ``max_body_size``
            InvalidMetadata, UnsupportedMode: from metadata validation
        """
        boundary = get_boundary(content_type)
        self.check_declared_size(content_length)

        collector = _PartCollector()
        parser = MultipartParser(boundary, collector.callbacks())
        received = 0

        async for chunk in chunks:
            if not chunk:
                continue
            received += len(chunk)
            if self.max_body_size is not None and received > self.max_body_size:
                raise PayloadTooLarge(f"Request body exceeds the limit of {self.max_body_size} bytes")
            try:
                parser.write(chunk)
            except MultipartParseError as e:
                raise MalformedRequest(f"Malformed multipart body: {e}") from e
            if collector.error is not None:
                raise collector.error

        parser.finalize()
        if not collector.finished:
            raise MalformedRequest("Multipart body ended before the closing boundary")

        return self._assemble(collector.parts, received)

    def _assemble(self, parts: List[_Part], received: int) -> DecodedUpload:
        by_name: Dict[str, List[_Part]] = {}
        for part in parts:
            by_name.setdefault(part.name, []).append(part)

        unexpected = sorted(name for name in by_name if name not in (METADATA_FIELD, FILE_FIELD))
        if unexpected:
            raise MalformedRequest(f"Unexpected multipart field(s): {', '.join(unexpected)}")
        for field in (METADATA_FIELD, FILE_FIELD):
            count = len(by_name.get(field, []))
            if count == 0:
                raise MalformedRequest(f"Missing '{field}' part")
            if count > 1:
                raise MalformedRequest(f"Expected exactly one '{field}' part, got {count}")

        metadata_part = by_name[METADATA_FIELD][0]
        if metadata_part.content_type != METADATA_CONTENT_TYPE:
            raise MalformedRequest(
                f"'{METADATA_FIELD}' part must be {METADATA_CONTENT_TYPE}, "
                f"got {metadata_part.content_type or 'no content type'}"
            )
        metadata = validate_metadata(bytes(metadata_part.data))

        file_part = by_name[FILE_FIELD][0]
        file_name = file_part.filename or PLACEHOLDER_FILE_NAME
        logger.debug(f"Decoded multipart body: {received} bytes, file part '{file_name}'")

        return DecodedUpload(
            file_name=file_name,
            content=file_part.data,
            metadata=metadata,
            content_type=file_part.content_type
        )
