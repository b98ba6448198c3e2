"""
Session engine: single-writer command loop around the registry.

Incoming events and reconciliation passes are both turned into commands on
one bounded queue, drained by a single consumer task. That consumer is the
only code path that mutates the registry. Reconciliation inputs are gathered
off the event loop first and applied as one command, so a pass never
interleaves with event processing.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, List, Optional, Set

from overwatch.errors import InspectionError
from overwatch.logger import get_logger
from overwatch.models import ReconcileInputs, ReconcileReport, Session
from overwatch.session.events import EventProcessor
from overwatch.session.reconciler import Reconciler
from overwatch.session.registry import SessionRegistry

logger = get_logger(__name__)

EVENT = "event"
RECONCILE = "reconcile"


@dataclass
class Command:
    kind: str
    payload: Any
    endpoint: str = "/events"
    future: Optional[asyncio.Future] = None


class SessionEngine:
    """
    Owns the command queue, the consumer task and the reconcile timer.

    The timer fires once at start and then every ``reconcile_interval``
    seconds. A tick is skipped while the previous pass is still gathering or
    waiting to be applied.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        processor: EventProcessor,
        reconciler: Reconciler,
        reconcile_interval: float = 60.0,
        queue_maxsize: int = 1000,
    ):
        self.registry = registry
        self.processor = processor
        self.reconciler = reconciler
        self.reconcile_interval = reconcile_interval
        self.queue_maxsize = queue_maxsize

        self._queue: Optional[asyncio.Queue] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._pass_tasks: Set[asyncio.Task] = set()
        self._reconcile_in_flight = False
        self._running = False
        self.last_report: Optional[ReconcileReport] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def queue_size(self) -> int:
        return self._queue.qsize() if self._queue else 0

    async def start(self, reconcile: bool = True) -> None:
        """Start the consumer and, unless disabled, the reconcile timer."""
        if self._running:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_maxsize)
        self._running = True
        self._consumer_task = asyncio.create_task(self._consume())
        if reconcile:
            self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(
            f"SessionEngine started (reconcile every {self.reconcile_interval}s)"
        )

    async def stop(self) -> None:
        self._running = False
        tasks = [self._timer_task, self._consumer_task, *self._pass_tasks]
        for task in tasks:
            if task and not task.done():
                task.cancel()
        for task in tasks:
            if task:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._pass_tasks.clear()

        # Nothing consumes the queue anymore; release callers still waiting on it.
        dropped = 0
        while self._queue is not None and not self._queue.empty():
            command = self._queue.get_nowait()
            if command.future and not command.future.done():
                command.future.set_exception(RuntimeError("SessionEngine stopped"))
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.warning(f"Dropped {dropped} queued commands on shutdown")
        self._timer_task = None
        self._consumer_task = None
        logger.info("SessionEngine stopped.")

    # -- Public API ----------------------------------------------------------

    async def submit_event(self, payload: Any, endpoint: str = "/events") -> Optional[Session]:
        """Queue an event and wait for it to be applied."""
        return await self._enqueue(Command(EVENT, payload, endpoint))

    async def reconcile_now(self) -> ReconcileReport:
        """Run a reconciliation pass now, unless one is already in flight."""
        return await self._reconcile_pass()

    async def join(self) -> None:
        """Wait until every queued command has been applied."""
        if self._queue is not None:
            await self._queue.join()

    def list_sessions(self) -> List[Session]:
        return self.registry.list()

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.registry.get(session_id)

    # -- Internal ------------------------------------------------------------

    async def _enqueue(self, command: Command) -> Any:
        if not self._running or self._queue is None:
            raise RuntimeError("SessionEngine is not running")
        command.future = asyncio.get_running_loop().create_future()
        await self._queue.put(command)
        return await command.future

    async def _consume(self) -> None:
        while True:
            command = await self._queue.get()
            try:
                result = self._execute(command)
            except Exception as e:
                logger.error(f"Failed to apply {command.kind} command: {e}")
                if command.future and not command.future.done():
                    command.future.set_exception(e)
            else:
                if command.future and not command.future.done():
                    command.future.set_result(result)
            finally:
                self._queue.task_done()

    def _execute(self, command: Command) -> Any:
        if command.kind == EVENT:
            return self.processor.process(command.payload, command.endpoint)
        if command.kind == RECONCILE:
            report = self.reconciler.apply(command.payload)
            self.last_report = report
            return report
        raise ValueError(f"Unknown command kind: {command.kind}")

    async def _reconcile_pass(self) -> ReconcileReport:
        if self._reconcile_in_flight:
            logger.warning("Reconciliation already in progress, skipping")
            return ReconcileReport(skipped=True, reason="previous pass still running")

        self._reconcile_in_flight = True
        try:
            try:
                inputs: ReconcileInputs = await asyncio.to_thread(self.reconciler.gather)
            except InspectionError as e:
                logger.warning(f"Reconciliation skipped: {e}")
                return ReconcileReport(skipped=True, reason=str(e))
            return await self._enqueue(Command(RECONCILE, inputs))
        finally:
            self._reconcile_in_flight = False

    async def _timer_loop(self) -> None:
        while self._running:
            task = asyncio.create_task(self._run_scheduled_pass())
            self._pass_tasks.add(task)
            task.add_done_callback(self._pass_tasks.discard)
            try:
                await asyncio.sleep(self.reconcile_interval)
            except asyncio.CancelledError:
                break

    async def _run_scheduled_pass(self) -> None:
        try:
            await self._reconcile_pass()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in reconciliation pass: {e}")
