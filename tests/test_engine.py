"""Tests for the single-writer SessionEngine."""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from overwatch.errors import InspectionError
from overwatch.models import ProcessInfo, ReconcileInputs, SessionStatus
from overwatch.session import Reconciler, SessionEngine


@pytest.fixture
def reconciler(registry, store):
    processes = MagicMock()
    processes.list_running_processes.return_value = []
    transcripts = MagicMock()
    transcripts.list_all_candidates.return_value = []
    return Reconciler(registry, store, processes=processes, transcripts=transcripts)


@pytest.fixture
async def engine(registry, processor, reconciler):
    engine = SessionEngine(registry, processor, reconciler, reconcile_interval=3600)
    await engine.start(reconcile=False)
    yield engine
    await engine.stop()


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestEvents:
    async def test_submit_event_applies(self, engine):
        session = await engine.submit_event(
            {"eventType": "session-start", "session_id": "s1", "cwd": "/work/app"}
        )
        assert session.id == "s1"
        assert engine.get_session("s1").status == SessionStatus.ACTIVE

    async def test_events_apply_in_order(self, engine):
        await asyncio.gather(
            *[
                engine.submit_event(
                    {"eventType": "pre-tool", "session_id": "s1", "cwd": "/w", "tool_name": f"T{i}"}
                )
                for i in range(20)
            ]
        )
        await engine.join()
        assert engine.get_session("s1").last_tool == "T19"
        assert engine.queue_size == 0

    async def test_rejected_event_returns_none(self, engine):
        assert await engine.submit_event({"eventType": "pre-tool"}) is None
        assert engine.list_sessions() == []

    async def test_processor_error_reaches_caller(self, registry, reconciler):
        processor = MagicMock()
        processor.process.side_effect = RuntimeError("boom")
        engine = SessionEngine(registry, processor, reconciler)
        await engine.start(reconcile=False)
        try:
            with pytest.raises(RuntimeError, match="boom"):
                await engine.submit_event({"session_id": "s1"})
            # The consumer survives a failed command.
            processor.process.side_effect = None
            processor.process.return_value = None
            assert await engine.submit_event({"session_id": "s1"}) is None
        finally:
            await engine.stop()

    async def test_stop_fails_queued_commands(self, registry, processor, reconciler):
        engine = SessionEngine(registry, processor, reconciler)
        await engine.start(reconcile=False)
        # Halt the consumer so submitted events stay queued.
        engine._consumer_task.cancel()
        await wait_for(engine._consumer_task.done)

        waiting = [
            asyncio.create_task(
                engine.submit_event({"eventType": "session-start", "session_id": f"s{i}"})
            )
            for i in range(3)
        ]
        await wait_for(lambda: engine.queue_size == 3)

        await engine.stop()

        for task in waiting:
            with pytest.raises(RuntimeError, match="stopped"):
                await asyncio.wait_for(task, timeout=1.0)
        assert engine.queue_size == 0
        assert engine.list_sessions() == []

    async def test_submit_requires_running_engine(self, registry, processor, reconciler):
        engine = SessionEngine(registry, processor, reconciler)
        with pytest.raises(RuntimeError, match="not running"):
            await engine.submit_event({"session_id": "s1"})


class TestReconcile:
    async def test_reconcile_now_applies_pass(self, engine, registry):
        await engine.submit_event({"eventType": "session-start", "session_id": "s1", "cwd": "/p"})
        engine.reconciler.transcripts.list_all_candidates.return_value = []
        engine.reconciler.processes.list_running_processes.return_value = [
            ProcessInfo(pid=1, cwd="/p")
        ]

        report = await engine.reconcile_now()

        assert report.skipped is False
        assert engine.last_report is report

    async def test_inspection_failure_is_skipped(self, engine, registry):
        await engine.submit_event({"eventType": "session-start", "session_id": "s1", "cwd": "/p"})
        engine.reconciler.processes.list_running_processes.side_effect = InspectionError("denied")

        report = await engine.reconcile_now()

        assert report.skipped is True
        assert registry.get("s1").status == SessionStatus.ACTIVE

    async def test_overlapping_pass_is_skipped(self, registry, processor):
        release = threading.Event()
        entered = threading.Event()
        reconciler = MagicMock()

        def slow_gather():
            entered.set()
            release.wait(timeout=5)
            return ReconcileInputs()

        reconciler.gather.side_effect = slow_gather
        reconciler.apply.return_value = MagicMock(skipped=False)
        engine = SessionEngine(registry, processor, reconciler)
        await engine.start(reconcile=False)
        try:
            first = asyncio.create_task(engine.reconcile_now())
            await wait_for(entered.is_set)

            second = await engine.reconcile_now()
            assert second.skipped is True
            assert "still running" in second.reason

            release.set()
            await first
            assert reconciler.apply.call_count == 1
        finally:
            release.set()
            await engine.stop()

    async def test_events_are_processed_while_gathering(self, registry, processor):
        release = threading.Event()
        reconciler = MagicMock()
        reconciler.gather.side_effect = lambda: release.wait(timeout=5) and ReconcileInputs()
        engine = SessionEngine(registry, processor, reconciler)
        await engine.start(reconcile=False)
        try:
            pass_task = asyncio.create_task(engine.reconcile_now())
            session = await engine.submit_event(
                {"eventType": "session-start", "session_id": "s1", "cwd": "/p"}
            )
            assert session.id == "s1"
            assert not pass_task.done()
            release.set()
            await pass_task
        finally:
            release.set()
            await engine.stop()

    async def test_timer_runs_pass_at_start(self, registry, processor, reconciler):
        engine = SessionEngine(registry, processor, reconciler, reconcile_interval=3600)
        await engine.start(reconcile=True)
        try:
            await wait_for(lambda: engine.last_report is not None)
            reconciler.processes.list_running_processes.assert_called_once()
        finally:
            await engine.stop()
        assert engine.running is False
