from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta

import pytest

import streamman.registry as registry_module
from streamman.config import RecordingConfig
from streamman.errors import RecordingNotFound, SignalFailed
from streamman.launcher import ProcessLauncher
from streamman.registry import make_filename

from conftest import ScriptLauncher, ids, wait_for_snapshot

LONG_RUNNING = "exec sleep 30"
EXITS_ON_INTERRUPT = 'trap "exit 0" INT; while true; do sleep 0.05; done'


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now


def test_make_filename_uses_channel_and_timestamp():
    assert make_filename("alice", datetime(2024, 1, 2, 3, 4, 5)) == "alice_20240102_030405.ts"


@pytest.mark.asyncio
async def test_clean_exit_removes_recording(make_registry):
    registry = make_registry(ScriptLauncher("sleep 0.2; exit 0"))

    recording_id = await registry.start("alice", False)

    snapshot = await registry.list_recordings()
    assert [r.id for r in snapshot.active] == [recording_id]
    assert re.fullmatch(r"alice_\d{8}_\d{6}\.ts", snapshot.active[0].filename)

    snapshot = await wait_for_snapshot(registry, lambda s: not s.active)
    assert snapshot.failed == []


@pytest.mark.asyncio
async def test_nonzero_exit_moves_to_failed_with_stderr(make_registry):
    registry = make_registry(ScriptLauncher('echo "pipe closed" >&2; exit 1'))

    recording_id = await registry.start("bob", True)
    snapshot = await wait_for_snapshot(registry, lambda s: bool(s.failed))

    assert snapshot.active == []
    failure = snapshot.failed[0]
    assert failure.id == recording_id
    assert failure.channel == "bob"
    assert failure.reason == "exit status 1: pipe closed"

    await registry.dismiss(recording_id)
    snapshot = await registry.list_recordings()
    assert snapshot.failed == []


@pytest.mark.asyncio
async def test_failed_transition_happens_once(make_registry):
    registry = make_registry(ScriptLauncher("exit 2"))

    recording_id = await registry.start("bob", False)
    await wait_for_snapshot(registry, lambda s: bool(s.failed))

    # a late second completion must not alter the record
    await registry._complete(recording_id, "something else")
    snapshot = await registry.list_recordings()
    assert [f.reason for f in snapshot.failed] == ["exit status 2"]
    assert snapshot.active == []


@pytest.mark.asyncio
async def test_launch_failure_goes_straight_to_failed(make_registry):
    launcher = ProcessLauncher(RecordingConfig(shell="/nonexistent/shell"))
    registry = make_registry(launcher)

    recording_id = await registry.start("dave", False)

    snapshot = await registry.list_recordings()
    assert snapshot.active == []
    assert [f.id for f in snapshot.failed] == [recording_id]
    assert snapshot.failed[0].reason.startswith("cannot start recording:")
    assert registry._failed[recording_id].process is None


@pytest.mark.asyncio
async def test_ids_are_unique(make_registry):
    registry = make_registry(ScriptLauncher("exit 0"))

    started = [await registry.start("alice", False) for _ in range(10)]

    assert len(set(started)) == len(started)
    await wait_for_snapshot(registry, lambda s: not s.active)


@pytest.mark.asyncio
async def test_same_channel_runs_independent_recordings(make_registry):
    registry = make_registry(ScriptLauncher(LONG_RUNNING))

    first = await registry.start("carol", False)
    second = await registry.start("carol", False)

    active, failed = ids(await registry.list_recordings())
    assert active == {first, second}
    assert failed == set()


@pytest.mark.asyncio
async def test_stop_unknown_id_raises_not_found(make_registry):
    registry = make_registry(ScriptLauncher(LONG_RUNNING))
    running = await registry.start("alice", False)

    with pytest.raises(RecordingNotFound):
        await registry.stop("nonexistent-id")

    active, failed = ids(await registry.list_recordings())
    assert active == {running}
    assert failed == set()


@pytest.mark.asyncio
async def test_stop_interrupts_process_group(make_registry):
    registry = make_registry(ScriptLauncher(EXITS_ON_INTERRUPT))

    recording_id = await registry.start("carol", False)
    await asyncio.sleep(0.1)
    await registry.stop(recording_id)

    # handled the interrupt and exited 0
    snapshot = await wait_for_snapshot(registry, lambda s: not s.active)
    assert snapshot.failed == []


@pytest.mark.asyncio
async def test_stop_unhandled_interrupt_is_recorded_as_failure(make_registry):
    registry = make_registry(ScriptLauncher(LONG_RUNNING))

    recording_id = await registry.start("carol", False)
    await registry.stop(recording_id)

    # removal is left to the supervisor
    snapshot = await wait_for_snapshot(registry, lambda s: not s.active)
    active, failed = ids(snapshot)
    assert recording_id not in active
    assert failed == {recording_id}
    assert snapshot.failed[0].reason == "signal: SIGINT"


@pytest.mark.asyncio
async def test_stop_does_not_remove_entry_itself(make_registry, monkeypatch):
    registry = make_registry(ScriptLauncher(LONG_RUNNING))
    recording_id = await registry.start("carol", False)

    sent = []
    monkeypatch.setattr(registry_module.os, "killpg", lambda pgid, sig: sent.append((pgid, sig)))
    await registry.stop(recording_id)
    monkeypatch.undo()

    pid = registry._active[recording_id].process.pid
    assert sent == [(pid, registry_module.signal.SIGINT)]
    active, _ = ids(await registry.list_recordings())
    assert active == {recording_id}


@pytest.mark.asyncio
async def test_stop_reports_signal_failure(make_registry, monkeypatch):
    registry = make_registry(ScriptLauncher(LONG_RUNNING))
    recording_id = await registry.start("carol", False)

    def _gone(pgid, sig):
        raise ProcessLookupError("No such process")

    monkeypatch.setattr(registry_module.os, "killpg", _gone)
    with pytest.raises(SignalFailed) as excinfo:
        await registry.stop(recording_id)
    monkeypatch.undo()

    assert str(excinfo.value) == "cannot abort recording"
    active, failed = ids(await registry.list_recordings())
    assert active == {recording_id}
    assert failed == set()


@pytest.mark.asyncio
async def test_dismiss_is_idempotent(make_registry):
    registry = make_registry(ScriptLauncher("exit 1"))
    recording_id = await registry.start("bob", False)
    await wait_for_snapshot(registry, lambda s: bool(s.failed))

    await registry.dismiss(recording_id)
    await registry.dismiss(recording_id)
    await registry.dismiss("never-existed")

    snapshot = await registry.list_recordings()
    assert snapshot.active == []
    assert snapshot.failed == []


@pytest.mark.asyncio
async def test_dismiss_leaves_active_recordings_alone(make_registry):
    registry = make_registry(ScriptLauncher(LONG_RUNNING))
    recording_id = await registry.start("alice", False)

    await registry.dismiss(recording_id)

    active, _ = ids(await registry.list_recordings())
    assert active == {recording_id}


@pytest.mark.asyncio
async def test_elapsed_is_computed_when_listing(make_registry):
    clock = FakeClock(datetime(2024, 5, 1, 12, 0, 0))
    registry = make_registry(ScriptLauncher(LONG_RUNNING), clock=clock)

    await registry.start("alice", False)
    clock.now += timedelta(minutes=2, seconds=3, milliseconds=600)

    snapshot = await registry.list_recordings()
    recording = snapshot.active[0]
    assert recording.filename == "alice_20240501_120000.ts"
    assert recording.elapsed == timedelta(minutes=2, seconds=4)
    assert recording.elapsed_formatted == "2m4s"


@pytest.mark.asyncio
async def test_output_path_is_inside_data_dir(make_registry, data_dir):
    launcher = ScriptLauncher("exit 0")
    registry = make_registry(launcher, clock=lambda: datetime(2024, 1, 2, 3, 4, 5))

    await registry.start("alice", True)

    assert launcher.calls == [("alice", True, data_dir / "alice_20240102_030405.ts")]


@pytest.mark.asyncio
async def test_partitions_never_overlap(make_registry):
    registry = make_registry(ScriptLauncher("sleep 0.1; exit $(( $$ % 2 ))"))

    for _ in range(6):
        await registry.start("eve", False)

    while True:
        active, failed = ids(await registry.list_recordings())
        assert not active & failed
        if not active:
            break
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_close_interrupts_running_recordings(make_registry):
    registry = make_registry(ScriptLauncher(EXITS_ON_INTERRUPT))
    await registry.start("alice", False)
    await registry.start("bob", False)
    await asyncio.sleep(0.1)

    await registry.close(timeout=5)

    snapshot = await registry.list_recordings()
    assert snapshot.active == []
    assert snapshot.failed == []
    assert not registry._tasks


@pytest.mark.asyncio
async def test_close_kills_pipelines_ignoring_interrupt(make_registry):
    registry = make_registry(ScriptLauncher('trap "" INT; while true; do sleep 0.05; done'))
    recording_id = await registry.start("alice", False)
    await asyncio.sleep(0.1)

    await registry.close(timeout=0.3)

    snapshot = await registry.list_recordings()
    assert snapshot.active == []
    assert [f.id for f in snapshot.failed] == [recording_id]
    assert snapshot.failed[0].reason == "signal: SIGKILL"



@pytest.mark.asyncio
async def test_close_continues_when_kill_is_refused(make_registry, monkeypatch):
    registry = make_registry(ScriptLauncher('trap "" INT; while true; do sleep 0.05; done'))
    await registry.start("alice", False)
    await registry.start("bob", False)
    await asyncio.sleep(0.1)

    real_killpg = registry_module.os.killpg
    refused = []

    def _killpg(pgid, sig):
        if sig == registry_module.signal.SIGKILL and not refused:
            refused.append(pgid)
            raise PermissionError("Operation not permitted")
        real_killpg(pgid, sig)

    monkeypatch.setattr(registry_module.os, "killpg", _killpg)
    try:
        await registry.close(timeout=0.3, kill_timeout=1)
    finally:
        monkeypatch.undo()
        for pgid in refused:
            real_killpg(pgid, registry_module.signal.SIGKILL)

    snapshot = await registry.list_recordings()
    assert snapshot.active == []
    assert sorted(f.reason for f in snapshot.failed) == ["signal: SIGKILL", "supervision cancelled"]


@pytest.mark.asyncio
async def test_log_records_carry_recording_id(make_registry, caplog):
    registry = make_registry(ScriptLauncher(LONG_RUNNING))

    with caplog.at_level(logging.INFO, logger="streamman"):
        recording_id = await registry.start("alice", False)

    started = [r for r in caplog.records if r.name == "streamman.registry"]
    assert started
    assert all(r.recording_id == recording_id for r in started)
    assert all(recording_id not in r.getMessage() for r in started)
