from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

import pytest

from streamman.config import RecordingConfig
from streamman.launcher import ProcessLauncher
from streamman.registry import RecordingRegistry, RecordingsSnapshot


class ScriptLauncher(ProcessLauncher):
    """Runs a small sh script instead of streamlink | ffmpeg."""

    def __init__(self, script: str, stderr_lines: int = 5):
        super().__init__(RecordingConfig(shell="/bin/sh", stderr_lines=stderr_lines))
        self.script = script
        self.calls: list[tuple[str, bool, Path]] = []

    def build_command(self, channel, transcode, output_path):
        self.calls.append((channel, transcode, output_path))
        return [self.settings.shell, "-c", self.script]


async def wait_for_snapshot(
    registry: RecordingRegistry,
    predicate: Callable[[RecordingsSnapshot], bool],
    timeout: float = 5.0,
) -> RecordingsSnapshot:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        snapshot = await registry.list_recordings()
        if predicate(snapshot):
            return snapshot
        if loop.time() > deadline:
            raise AssertionError(f"condition not reached, last snapshot: {snapshot}")
        await asyncio.sleep(0.02)


def ids(snapshot: RecordingsSnapshot) -> tuple[set[str], set[str]]:
    return {r.id for r in snapshot.active}, {r.id for r in snapshot.failed}


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
async def make_registry(data_dir: Path):
    created: list[RecordingRegistry] = []

    def _make(launcher: ProcessLauncher, **kwargs) -> RecordingRegistry:
        registry = RecordingRegistry(str(data_dir), launcher, **kwargs)
        created.append(registry)
        return registry

    yield _make

    # interrupt anything a test left running
    for registry in created:
        await registry.close(timeout=2)
