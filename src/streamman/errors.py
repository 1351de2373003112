"""
Error types raised by the recording core.
"""

import signal
from typing import Optional, Sequence


class RecorderError(Exception):
    """Base class for recording errors."""


class LaunchFailed(RecorderError):
    """The capture pipeline could not be started."""

    def __init__(self, command: str, cause: BaseException):
        self.command = command
        self.cause = cause
        super().__init__(f"cannot start recording: {cause}")


class RecordingNotFound(RecorderError):
    """No active recording has the requested id."""

    def __init__(self, recording_id: str):
        self.recording_id = recording_id
        super().__init__("recording not found")


class SignalFailed(RecorderError):
    """The interrupt could not be delivered to a recording's process group."""

    def __init__(self, recording_id: str, cause: BaseException):
        self.recording_id = recording_id
        self.cause = cause
        super().__init__("cannot abort recording")


class ProcessFailed(RecorderError):
    """
    A capture pipeline exited abnormally.

    ``returncode`` follows asyncio conventions: negative values mean the
    process was killed by that signal number.
    """

    def __init__(self, returncode: int, stderr: Sequence[str] = ()):
        self.returncode = returncode
        self.stderr = list(stderr)
        super().__init__(self._describe())

    @property
    def signal_name(self) -> Optional[str]:
        if self.returncode >= 0:
            return None
        try:
            return signal.Signals(-self.returncode).name
        except ValueError:
            return f"signal {-self.returncode}"

    def _describe(self) -> str:
        name = self.signal_name
        message = f"signal: {name}" if name else f"exit status {self.returncode}"
        if self.stderr:
            message += ": " + " / ".join(self.stderr)
        return message
