"""Upload route: receives a video, analyzes it and returns suggestions."""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.requests import ClientDisconnect

from src.shared.analysis.exceptions import MalformedRequest, UploadError
from src.shared.analysis.response import assemble_response
from src.shared.analysis.schemas import AnalysisOutcome, UploadResponse
from src.shared.inference.invoker import InferenceInvoker
from src.shared.upload_video.multipart import MultipartDecoder

logger = logging.getLogger(__name__)

router = APIRouter(tags=["upload"])

DISCONNECT_POLL_SECONDS = 1.0


class UploadHandler:
    """
    Runs the upload pipeline for one request at a time:
    decode -> validate -> invoke -> assemble.

    Any stage failing ends the request; nothing is retried.
    """

    def __init__(
        self,
        decoder: MultipartDecoder,
        invoker: InferenceInvoker,
        disconnect_poll_seconds: float = DISCONNECT_POLL_SECONDS
    ):
        self.decoder = decoder
        self.invoker = invoker
        self.disconnect_poll_seconds = disconnect_poll_seconds

    async def handle(self, request: Request) -> Optional[UploadResponse]:
        """
        Handle an upload request.

        Returns None if the client went away while the engine was running.

        Raises:
            UploadError: for client errors and resource failures
        """
        try:
            upload = await self.decoder.decode(
                request.stream(),
                request.headers.get("content-type"),
                request.headers.get("content-length")
            )
        except ClientDisconnect:
            raise MalformedRequest("Client disconnected while uploading")

        logger.info(
            f"File received: \"{upload.file_name}\", size: {upload.size} bytes, "
            f"content type: {upload.content_type or 'application/octet-stream'}, "
            f"mode: {upload.metadata.mode.description}"
        )

        outcome = await self._invoke_while_connected(request, upload)
        if outcome is None:
            return None

        return assemble_response(upload.file_name, upload.metadata.mode, outcome)

    async def _invoke_while_connected(self, request: Request, upload) -> Optional[AnalysisOutcome]:
        """Runs the invoker, cancelling it if the client disconnects."""
        task = asyncio.ensure_future(self.invoker.invoke(upload))
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self.disconnect_poll_seconds)
                if done:
                    return task.result()
                if await request.is_disconnected():
                    logger.warning(
                        f"Client disconnected during analysis of '{upload.file_name}'; cancelling"
                    )
                    task.cancel()
                    # Wait for the engine to release its process and scratch files
                    await asyncio.wait({task})
                    return None
        finally:
            if not task.done():
                task.cancel()


def get_upload_handler(request: Request) -> UploadHandler:
    return request.app.state.upload_handler


@router.post("/upload", response_model=UploadResponse)
async def upload_video(request: Request, handler: UploadHandler = Depends(get_upload_handler)):
    """
    Accepts a multipart upload with a JSON ``metadata`` part ({"mode": 0|1})
    and a binary ``file`` part. Returns the analysis suggestions; an engine
    crash is reported as ``"suggestions": null`` with status 200.
    """
    try:
        response = await handler.handle(request)
    except UploadError as e:
        if e.status_code >= 500:
            logger.error(f"Upload failed: {e}", exc_info=True)
        else:
            logger.warning(f"Rejected upload ({e.error}): {e}")
        raise HTTPException(
            status_code=e.status_code,
            detail={"error": e.error, "message": str(e)}
        )

    if response is None:
        # Nobody is listening; the status is only visible in the access log
        raise HTTPException(status_code=499, detail="Client closed request")
    return response
