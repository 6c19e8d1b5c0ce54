"""
Runs the external inference script as a subprocess.

The script is invoked as

    <python> <script> --video_path <file> --video_name <name> --output_dir <dir>

inside the engine directory and is expected to write ``suggestions.json``
(a JSON array of ``{"start", "end", "suggestion"}`` objects) into the
output directory.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from src.shared.analysis.exceptions import EngineCrash, ResourceError
from src.shared.analysis.schemas import AnalysisOutcome, AnalyzerMode, Suggestion
from src.shared.inference.port import DEFAULT_VIDEO_NAME, AnalysisEngine

logger = logging.getLogger(__name__)

OUTPUT_FILE_NAME = "suggestions.json"
VIDEO_SUFFIX = ".mp4"

_suggestions_adapter = TypeAdapter(List[Suggestion])


def safe_video_name(video_name: str) -> str:
    """Reduces a client-supplied name to a bare file stem without control characters."""
    printable = "".join(c for c in video_name if c.isprintable())
    stem = Path(printable.replace("\\", "/")).name
    stem = Path(stem).stem.strip(". ")
    return stem or DEFAULT_VIDEO_NAME


def parse_inference_output(raw: bytes) -> List[Suggestion]:
    """
    Parses the script's suggestions file, preserving order.
    Raises EngineCrash if it is not a JSON array of well-formed suggestions.
    """
    try:
        return _suggestions_adapter.validate_json(raw)
    except ValidationError as e:
        raise EngineCrash(f"Inference output is malformed: {e.error_count()} error(s): {e}") from e


def _write_scratch(video_path: Path, output_dir: Path, video: bytes) -> None:
    output_dir.mkdir()
    video_path.write_bytes(video)


async def _write_scratch_off_loop(video_path: Path, output_dir: Path, video: bytes) -> None:
    """Writes the video from a worker thread; cancellation waits for the write to stop."""
    write = asyncio.ensure_future(asyncio.to_thread(_write_scratch, video_path, output_dir, video))
    try:
        await asyncio.shield(write)
    except asyncio.CancelledError:
        # The thread cannot be interrupted; let it finish before the directory is removed
        await asyncio.wait({write})
        raise


async def _remove_scratch(work_dir: Path) -> None:
    try:
        await asyncio.to_thread(shutil.rmtree, work_dir)
    except OSError as e:
        raise ResourceError(f"Cannot remove scratch directory {work_dir}: {e}") from e


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kills the process if it is still running and reaps it."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


class InferenceScriptEngine(AnalysisEngine):
    """
    AnalysisEngine backed by the inference script.

    Args:
        engine_dir: Working directory for the script.
        python: Interpreter path, relative to engine_dir or absolute.
        script: Script path, relative to engine_dir or absolute.
        timeout: Seconds to wait for the script before killing it, or None.
        temp_dir: Where per-invocation scratch directories are created.
    """

    def __init__(
        self,
        engine_dir: Path,
        python: str = "./.venv/bin/python",
        script: str = "inference.py",
        timeout: Optional[float] = None,
        temp_dir: Optional[Path] = None
    ):
        self.engine_dir = Path(engine_dir)
        self.python = python
        self.script = script
        self.timeout = timeout
        self.temp_dir = Path(temp_dir) if temp_dir else None

    @classmethod
    def from_settings(cls, settings) -> "InferenceScriptEngine":
        return cls(
            engine_dir=settings.engine_dir,
            python=settings.engine_python,
            script=settings.engine_script,
            timeout=settings.engine_timeout,
            temp_dir=settings.temp_dir
        )

    def build_command(self, video_path: Path, video_name: str, output_dir: Path) -> List[str]:
        return [
            self.python,
            self.script,
            "--video_path", str(video_path),
            "--video_name", video_name,
            "--output_dir", str(output_dir),
        ]

    async def invoke(
        self,
        video: bytes,
        mode: AnalyzerMode,
        *,
        video_name: str = DEFAULT_VIDEO_NAME
    ) -> AnalysisOutcome:
        # The script only implements multi-label analysis, so mode is not forwarded
        video_name = safe_video_name(video_name)
        try:
            work_dir = Path(tempfile.mkdtemp(prefix="streameme-", dir=self.temp_dir))
        except OSError as e:
            raise ResourceError(f"Cannot create scratch directory: {e}") from e

        try:
            work_dir = work_dir.resolve()
            video_path = work_dir / f"{video_name}{VIDEO_SUFFIX}"
            output_dir = work_dir / "out"
            try:
                await _write_scratch_off_loop(video_path, output_dir, video)
            except OSError as e:
                raise ResourceError(f"Cannot write video to scratch storage: {e}") from e

            try:
                suggestions = await self._run(video_path, video_name, output_dir)
            except EngineCrash as e:
                logger.warning(f"Inference failed: {e}")
                return AnalysisOutcome.crash()
        finally:
            await _remove_scratch(work_dir)

        return AnalysisOutcome.success(suggestions)

    async def _run(self, video_path: Path, video_name: str, output_dir: Path) -> List[Suggestion]:
        command = self.build_command(video_path, video_name, output_dir)
        logger.info("Starting inference procedure")
        logger.debug(f"Running {' '.join(command)} under {self.engine_dir}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.engine_dir),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise EngineCrash(f"Cannot start inference script in {self.engine_dir}: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await _terminate(process)
            raise EngineCrash(f"Inference script timed out after {self.timeout} seconds")
        except asyncio.CancelledError:
            await _terminate(process)
            raise

        if process.returncode != 0:
            logger.error(
                f"Inference script exited with status {process.returncode}; dumping stderr:\n"
                f"{stderr.decode('utf-8', errors='replace')}"
            )
            raise EngineCrash(f"Inference script exited with status {process.returncode}")

        logger.info("Inference procedure exited successfully")
        output_path = output_dir / OUTPUT_FILE_NAME
        try:
            raw = output_path.read_bytes()
        except OSError as e:
            raise EngineCrash(f"Cannot read {output_path}: {e}") from e
        return parse_inference_output(raw)


def engine_available(engine: InferenceScriptEngine) -> bool:
    """True if the engine directory and script exist."""
    script = Path(engine.script)
    if not script.is_absolute():
        script = engine.engine_dir / script
    return engine.engine_dir.is_dir() and os.path.exists(script)
