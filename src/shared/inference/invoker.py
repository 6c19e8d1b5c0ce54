"""
Drives one analysis per upload and reduces every engine failure to the
crash marker.
"""

import asyncio
import logging
import time
from typing import Optional

from src.shared.analysis.exceptions import EngineCrash, ResourceError, UnsupportedMode
from src.shared.analysis.schemas import AnalysisOutcome, AnalyzerMode, DecodedUpload
from src.shared.inference.port import AnalysisEngine

logger = logging.getLogger(__name__)


class InferenceInvoker:
    """
    Invokes the analysis engine for a decoded upload.

    A single attempt is made per upload. Engine crashes, timeouts, malformed
    output and any unexpected engine error all become
    ``AnalysisOutcome.crash()`` and are logged as errors; only ResourceError
    and cancellation propagate to the caller.

    Args:
        engine: The analysis engine (possibly wrapped in a BoundedEngine,
            which then owns the timeout).
        timeout: Overall seconds allowed per invocation, or None.
    """

    def __init__(self, engine: AnalysisEngine, timeout: Optional[float] = None):
        self.engine = engine
        self.timeout = timeout

    async def invoke(self, upload: DecodedUpload) -> AnalysisOutcome:
        mode = upload.metadata.mode
        if mode is not AnalyzerMode.MULTI:
            raise UnsupportedMode(f"Analysis mode '{mode.description}' is not available")

        started = time.monotonic()
        try:
            outcome = await asyncio.wait_for(
                self.engine.invoke(upload.content, mode, video_name=upload.file_name),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Analysis of '{upload.file_name}' timed out after {time.monotonic() - started:.1f} seconds; "
                f"reporting null suggestions"
            )
            return AnalysisOutcome.crash()
        except EngineCrash as e:
            outcome = AnalysisOutcome.crash()
            logger.debug(f"Engine raised EngineCrash: {e}")
        except ResourceError:
            raise
        except Exception:
            logger.exception(f"Unexpected engine error while analyzing '{upload.file_name}'")
            outcome = AnalysisOutcome.crash()

        elapsed = time.monotonic() - started
        if outcome.crashed:
            # Clients still get a 200; this is the only place the defect is visible
            logger.error(
                f"Inference engine crashed while analyzing '{upload.file_name}' "
                f"({upload.size} bytes, {elapsed:.1f}s); reporting null suggestions"
            )
        else:
            logger.info(
                f"Analysis of '{upload.file_name}' finished in {elapsed:.1f}s "
                f"with {len(outcome.suggestions)} suggestion(s)"
            )
        return outcome
