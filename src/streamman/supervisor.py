"""
Lifecycle supervision for running capture pipelines.
"""

import asyncio
import logging
import re
from collections import deque
from typing import Optional, Union

from .errors import ProcessFailed

# ffmpeg rewrites its progress line with carriage returns
_LINE_SPLIT = re.compile(rb'[\r\n]')


class RecordingSupervisor:
    """
    Waits for one pipeline to exit and reports how it ended.

    The supervisor never touches the registry; the registry awaits
    ``wait()`` and applies the result itself.
    """

    def __init__(
        self,
        recording_id: str,
        process: asyncio.subprocess.Process,
        logger: Union[logging.Logger, logging.LoggerAdapter],
        stderr_lines: int = 5
    ):
        self.recording_id = recording_id
        self.process = process
        self._logger = logger
        self._tail: deque[str] = deque(maxlen=stderr_lines)

    @property
    def stderr_tail(self) -> list[str]:
        return list(self._tail)

    def _keep(self, raw: bytes) -> None:
        text = raw.decode('utf-8', errors='ignore').strip()
        if text:
            self._tail.append(text)
            self._logger.debug(f"pipeline: {text}")

    async def _drain_stderr(self) -> None:
        stream = self.process.stderr
        if stream is None:
            return

        pending = b''
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            parts = _LINE_SPLIT.split(pending + chunk)
            pending = parts.pop()
            for part in parts:
                self._keep(part)
        if pending:
            self._keep(pending)

    async def wait(self) -> Optional[str]:
        """
        Wait for the pipeline to exit.

        Returns:
            None after a clean exit (status 0), otherwise the failure reason.
        """
        try:
            await self._drain_stderr()
            returncode = await self.process.wait()
        except OSError as e:
            self._logger.error(f"Waiting for pipeline failed: {e}")
            return f"wait failed: {e}"

        if returncode == 0:
            self._logger.info("Recording finished")
            return None

        reason = str(ProcessFailed(returncode, self._tail))
        self._logger.warning(f"Recording failed: {reason}")
        return reason
