"""
Process launcher for StreaMan.
Builds the streamlink | ffmpeg capture pipeline and starts it in its own
process group.
"""

import asyncio
import shlex
from pathlib import Path
from typing import List, Optional

from .config import RecordingConfig
from .errors import LaunchFailed
from .logger import get_channel_logger


class ProcessLauncher:
    """
    Starts capture pipelines.

    The pipeline runs under a shell so streamlink and ffmpeg are connected
    by a pipe; the shell is started with a new session, making its pid the
    process group id for both stages.
    """

    def __init__(self, settings: Optional[RecordingConfig] = None):
        self.settings = settings or RecordingConfig()

    def build_pipeline(self, channel: str, transcode: bool, output_path: Path) -> str:
        """Compose the shell pipeline for one recording."""
        s = self.settings
        if transcode:
            video_args = ['-vcodec', s.video_codec, '-crf', str(s.crf)]
        else:
            video_args = ['-vcodec', 'copy']

        fetch = [s.streamlink, s.url_template.format(channel=channel), s.quality, '-O']
        encode = [
            s.ffmpeg,
            '-i', 'pipe:0',
            '-ss', s.skip,
            *video_args,
            '-acodec', 'copy',
            str(output_path),
        ]
        return f"{shlex.join(fetch)} | {shlex.join(encode)}"

    def build_command(self, channel: str, transcode: bool, output_path: Path) -> List[str]:
        """Full argument vector handed to the OS."""
        return [self.settings.shell, '-c', self.build_pipeline(channel, transcode, output_path)]

    async def launch(
        self,
        channel: str,
        transcode: bool,
        output_path: Path
    ) -> asyncio.subprocess.Process:
        """
        Start the capture pipeline for a channel.

        Args:
            channel: Channel to record. Must be non-empty.
            transcode: Re-encode video instead of copying it.
            output_path: File the pipeline writes to.

        Returns:
            The running process; its stderr is a pipe.

        Raises:
            ValueError: If channel is empty.
            LaunchFailed: If the process could not be started.
        """
        if not channel:
            raise ValueError("channel must not be empty")

        logger = get_channel_logger(channel, 'launcher')
        cmd = self.build_command(channel, transcode, output_path)
        logger.debug(f"Running: {shlex.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start pipeline: {e}")
            raise LaunchFailed(shlex.join(cmd), e) from e

        logger.info(f"Pipeline started (pid={process.pid}, transcode={transcode})")
        return process
