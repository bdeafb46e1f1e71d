"""Concurrent encoding of every rendition of a ladder under one deadline."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from app.core.config import settings
from app.modules.transcoding.exceptions import EncodeError, EncodingTimeoutError
from app.modules.transcoding.ffmpeg import FFmpegTranscoder
from app.modules.transcoding.ladder import RenditionSpec
from app.modules.transcoding.playlist import MasterPlaylist

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class EncodingTask:
    """Bookkeeping for one rendition within a job."""
    index: int
    spec: RenditionSpec
    status: TaskStatus = TaskStatus.PENDING
    playlist_path: Optional[str] = None
    exit_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class EncodingResult:
    master_playlist_path: str
    tasks: list[EncodingTask] = field(default_factory=list)

    @property
    def renditions(self) -> list[RenditionSpec]:
        return [task.spec for task in self.tasks]


class EncodingOrchestrator:
    """Runs one encoder per rendition and assembles the master playlist.

    Any rendition failure cancels the others and re-raises that failure.
    A watchdog cancels everything once the deadline passes, in which case
    EncodingTimeoutError is raised even if some renditions completed.
    ``master.m3u8`` is written only when every rendition succeeded.
    """

    def __init__(
        self,
        transcoder: Optional[FFmpegTranscoder] = None,
        deadline: float = settings.ENCODING_TIMEOUT_SECONDS,
        segment_duration: int = settings.HLS_SEGMENT_DURATION,
    ):
        self.transcoder = transcoder or FFmpegTranscoder()
        self.deadline = deadline
        self.segment_duration = segment_duration

    async def encode_all(
        self,
        source: str,
        output_dir: str,
        specs: Sequence[RenditionSpec],
        total_duration: float,
        deadline: Optional[float] = None,
    ) -> EncodingResult:
        """Encode all renditions concurrently.

        Args:
            source: Local source file
            output_dir: Directory receiving every rendition and the master playlist
            specs: Renditions in planning order
            total_duration: Source duration in seconds
            deadline: Seconds allowed for the whole phase, defaults to the configured one

        Returns:
            Path of the master playlist and per-rendition bookkeeping

        Raises:
            EncodeError: The first rendition that failed
            EncodingTimeoutError: The deadline passed first
        """
        deadline = self.deadline if deadline is None else deadline
        tasks = [EncodingTask(index=i, spec=spec) for i, spec in enumerate(specs)]
        master = MasterPlaylist(len(tasks))
        first_error: list[BaseException] = []

        async def run_one(task: EncodingTask) -> None:
            task.status = TaskStatus.RUNNING
            try:
                output = await self.transcoder.encode_rendition(
                    source,
                    output_dir,
                    task.spec,
                    total_duration,
                    self.segment_duration,
                )
            except asyncio.CancelledError:
                task.status = TaskStatus.FAILED
                task.error = "cancelled"
                raise
            except Exception as e:
                task.status = TaskStatus.FAILED
                task.error = str(e)
                if isinstance(e, EncodeError):
                    task.exit_code = e.exit_code
                if not first_error:
                    first_error.append(e)
                raise
            task.playlist_path = output.playlist_path
            task.exit_code = 0
            task.status = TaskStatus.DONE
            master.set_entry(task.index, task.spec)

        running = [
            asyncio.create_task(run_one(task), name=f"encode-{task.spec.name}")
            for task in tasks
        ]
        timed_out = False

        async def watchdog() -> None:
            nonlocal timed_out
            await asyncio.sleep(deadline)
            timed_out = True
            logger.error(f"Encoding deadline of {deadline:g}s reached, cancelling renditions")
            for t in running:
                t.cancel()

        watchdog_task = asyncio.create_task(watchdog(), name="encode-watchdog")
        try:
            pending = set(running)
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                if first_error:
                    break
        finally:
            watchdog_task.cancel()
            for t in running:
                if not t.done():
                    t.cancel()
            # Children must be reaped before the output directory can go away
            await asyncio.gather(*running, watchdog_task, return_exceptions=True)

        if timed_out:
            completed = [t.spec.name for t in tasks if t.status == TaskStatus.DONE]
            raise EncodingTimeoutError(deadline, completed)
        if first_error:
            failed = first_error[0]
            logger.error(f"Rendition failed, cancelled remaining encodes: {failed}")
            raise failed

        master_path = master.write(output_dir)
        logger.info(
            f"Encoded {len(tasks)} renditions",
            extra={"renditions": [t.spec.name for t in tasks]},
        )
        return EncodingResult(master_playlist_path=master_path, tasks=tasks)
