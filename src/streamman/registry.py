"""
Recording registry for StreaMan.

Tracks every capture pipeline started through the web front end. A
recording lives in exactly one of two partitions:

- ``active``: its pipeline is running;
- ``failed``: its pipeline could not be started or exited abnormally.

A pipeline that exits cleanly simply leaves ``active``. Both partitions are
guarded by a single lock so a snapshot never shows an id in both or, during
a transition, in neither.
"""

import asyncio
import os
import signal
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from .errors import LaunchFailed, RecordingNotFound, SignalFailed
from .launcher import ProcessLauncher
from .logger import get_channel_logger, get_logger
from .supervisor import RecordingSupervisor


@dataclass
class Recording:
    """One capture attempt."""
    id: str
    channel: str
    transcode: bool
    filename: str
    start_time: datetime
    process: Optional[asyncio.subprocess.Process] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ActiveRecording:
    """Point-in-time view of a running recording."""
    id: str
    channel: str
    filename: str
    start_time: datetime
    elapsed: timedelta

    @property
    def elapsed_formatted(self) -> str:
        """Get human-readable duration."""
        total = int(self.elapsed.total_seconds())
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours:
            return f"{hours}h{minutes}m{seconds}s"
        if minutes:
            return f"{minutes}m{seconds}s"
        return f"{seconds}s"


@dataclass(frozen=True)
class FailedRecording:
    """Point-in-time view of a failed recording."""
    id: str
    channel: str
    filename: str
    start_time: datetime
    reason: str


@dataclass
class RecordingsSnapshot:
    active: List[ActiveRecording] = field(default_factory=list)
    failed: List[FailedRecording] = field(default_factory=list)


def make_filename(channel: str, start_time: datetime) -> str:
    return f"{channel}_{start_time.strftime('%Y%m%d_%H%M%S')}.ts"


class RecordingRegistry:
    """
    Owns the active and failed recordings.

    Features:
    - Unique ids per recording (UUID4)
    - One supervisor task per running pipeline
    - Process group interrupt on stop
    - Failed recordings kept until dismissed
    """

    def __init__(
        self,
        data_dir: str,
        launcher: Optional[ProcessLauncher] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize the registry.

        Args:
            data_dir: Directory recordings are written to.
            launcher: Starts capture pipelines.
            clock: Source of timestamps for filenames and durations.
        """
        self.data_dir = Path(data_dir)
        self.launcher = launcher or ProcessLauncher()
        self._clock = clock
        self._logger = get_logger('registry')
        self._lock = asyncio.Lock()

        self._active: Dict[str, Recording] = {}
        self._failed: Dict[str, Recording] = {}
        self._tasks: Set[asyncio.Task] = set()

    def _new_id(self) -> str:
        # ids stay unique across both partitions
        while True:
            recording_id = str(uuid.uuid4())
            if recording_id not in self._active and recording_id not in self._failed:
                return recording_id

    async def start(self, channel: str, transcode: bool) -> str:
        """
        Start recording a channel.

        Launch errors do not propagate: the recording is filed under
        ``failed`` and its id is returned like any other.

        Args:
            channel: Channel to record.
            transcode: Re-encode video instead of copying it.

        Returns:
            Id of the new recording.
        """
        logger = get_channel_logger(channel, 'registry')
        start_time = self._clock()
        recording = Recording(
            id="",
            channel=channel,
            transcode=transcode,
            filename=make_filename(channel, start_time),
            start_time=start_time,
        )
        output_path = self.data_dir / recording.filename

        try:
            process = await self.launcher.launch(channel, transcode, output_path)
        except LaunchFailed as e:
            process = None
            recording.error = str(e)

        async with self._lock:
            recording.id = self._new_id()
            logger = logger.for_recording(recording.id)
            if process is None:
                self._failed[recording.id] = recording
                logger.error(f"Recording {recording.filename} failed to start: {recording.error}")
                return recording.id

            recording.process = process
            self._active[recording.id] = recording

        logger.info(f"Recording {recording.filename} started")

        supervisor = RecordingSupervisor(
            recording.id,
            process,
            logger,
            stderr_lines=self.launcher.settings.stderr_lines,
        )
        task = asyncio.create_task(self._supervise(supervisor))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return recording.id

    async def _supervise(self, supervisor: RecordingSupervisor) -> None:
        try:
            reason = await supervisor.wait()
        except asyncio.CancelledError:
            await self._complete(supervisor.recording_id, "supervision cancelled")
            raise
        await self._complete(supervisor.recording_id, reason)

    async def _complete(self, recording_id: str, reason: Optional[str]) -> None:
        """Move a recording out of ``active`` once its pipeline has ended."""
        async with self._lock:
            recording = self._active.pop(recording_id, None)
            if recording is None:
                return
            recording.process = None
            if reason is not None:
                recording.error = reason
                self._failed[recording_id] = recording

    async def stop(self, recording_id: str) -> None:
        """
        Ask a running recording to stop.

        Sends SIGINT to the pipeline's process group. The recording stays
        active until its pipeline actually exits.

        Raises:
            RecordingNotFound: If no active recording has this id.
            SignalFailed: If the signal could not be delivered.
        """
        async with self._lock:
            recording = self._active.get(recording_id)
            if recording is None:
                raise RecordingNotFound(recording_id)

            logger = get_channel_logger(recording.channel, 'registry', recording_id)
            try:
                os.killpg(recording.process.pid, signal.SIGINT)
            except OSError as e:
                logger.warning(f"Cannot interrupt recording {recording.filename}: {e}")
                raise SignalFailed(recording_id, e) from e

        logger.info(f"Stopping recording {recording.filename}...")

    async def dismiss(self, recording_id: str) -> None:
        """Forget a failed recording. Unknown ids are ignored."""
        async with self._lock:
            if self._failed.pop(recording_id, None) is not None:
                self._logger.debug(f"Dismissed failed recording {recording_id}")

    async def list_recordings(self) -> RecordingsSnapshot:
        """Snapshot both partitions, with durations measured now."""
        async with self._lock:
            now = self._clock()
            active = [
                ActiveRecording(
                    id=rec.id,
                    channel=rec.channel,
                    filename=rec.filename,
                    start_time=rec.start_time,
                    elapsed=timedelta(seconds=round((now - rec.start_time).total_seconds())),
                )
                for rec in self._active.values()
            ]
            failed = [
                FailedRecording(
                    id=rec.id,
                    channel=rec.channel,
                    filename=rec.filename,
                    start_time=rec.start_time,
                    reason=rec.error,
                )
                for rec in self._failed.values()
            ]

        active.sort(key=lambda r: (r.start_time, r.id))
        failed.sort(key=lambda r: (r.start_time, r.id))
        return RecordingsSnapshot(active=active, failed=failed)

    async def close(self, timeout: float = 10.0, kill_timeout: float = 5.0) -> None:
        """
        Interrupt all running pipelines and wait for them to exit.

        Pipelines still running after ``timeout`` seconds are killed;
        supervisors still running ``kill_timeout`` seconds later are
        cancelled.
        """
        async with self._lock:
            running = list(self._active.values())
            for recording in running:
                try:
                    os.killpg(recording.process.pid, signal.SIGINT)
                except OSError as e:
                    self._logger.warning(f"Cannot interrupt {recording.filename}: {e}")

        if running:
            self._logger.info(f"Waiting for {len(running)} recording(s) to finish...")

        tasks = list(self._tasks)
        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if not pending:
            return

        self._logger.warning(f"{len(pending)} recording(s) did not exit in time, killing...")
        async with self._lock:
            for recording in self._active.values():
                try:
                    os.killpg(recording.process.pid, signal.SIGKILL)
                except ProcessLookupError:
                    self._logger.debug(f"{recording.filename} already gone")
                except OSError as e:
                    self._logger.warning(f"Cannot kill {recording.filename}: {e}")

        _, pending = await asyncio.wait(pending, timeout=kill_timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
