"""
Transfer orchestration - concurrent uploads with completion-ordered results.

Every request becomes an independent asyncio task. A failure is recorded as
a TransferOutcome for that request only; siblings keep running unless the
orchestrator is in fail-fast mode.

Usage:
    orchestrator = TransferOrchestrator(client)

    # All: wait for every unit, outcomes in submission order
    outcomes = await orchestrator.upload_all(requests)

    # Race: consume outcomes as they finish, account for the rest later
    batch = orchestrator.first_completed(requests)
    async for outcome in batch:
        print(outcome.request.name)
        break
    outcomes = await batch.drain()
"""
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Dict, Iterable, List, Optional, Set

from ..config import UploadConfig
from ..errors import TransferCancelled, TransferError
from ..models import Credential, TransferOutcome, UploadRequest
from ..protocols import IUploadClient
from ..utils.events import TRANSFER_COMPLETE, TRANSFER_FAIL, TRANSFER_START, EventEmitter
from .parallel import parallel_count_for

logger = logging.getLogger(__name__)


class TransferBatch:
    """
    One orchestration call: (request, task) pairs plus the outcomes so far.

    Async-iterable in completion order. Iteration can stop early; units still
    running finish in the background and show up in ``drain()``.
    """

    def __init__(
        self,
        orchestrator: "TransferOrchestrator",
        requests: List[UploadRequest],
        credential: Optional[Credential],
        tenant_id: Optional[str],
        parallel: int,
        fail_fast: bool = False,
    ):
        self._orchestrator = orchestrator
        self._requests = requests
        self._credential = credential
        self._tenant_id = tenant_id
        self._semaphore = asyncio.Semaphore(parallel)
        self._fail_fast = fail_fast

        self._tasks: Dict[int, asyncio.Task] = {}
        self._outcomes: Dict[int, TransferOutcome] = {}
        self._completed: List[TransferOutcome] = []
        self._queue: asyncio.Queue = asyncio.Queue()
        self._finished = asyncio.Event()
        self._delivered = 0
        self._cancelling = False
        self._starter: Optional[asyncio.Task] = None
        self._notifications: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._requests)

    def __aiter__(self):
        return self

    async def __anext__(self) -> TransferOutcome:
        if self._delivered >= len(self._requests):
            raise StopAsyncIteration
        outcome = await self._queue.get()
        self._delivered += 1
        return outcome

    @property
    def requests(self) -> List[UploadRequest]:
        return list(self._requests)

    @property
    def outcomes(self) -> List[TransferOutcome]:
        """Outcomes collected so far, in submission order."""
        return [self._outcomes[i] for i in range(len(self._requests)) if i in self._outcomes]

    @property
    def completed(self) -> List[TransferOutcome]:
        """Outcomes collected so far, in completion order."""
        return list(self._completed)

    @property
    def pending(self) -> List[UploadRequest]:
        """Requests without an outcome yet."""
        return [r for i, r in enumerate(self._requests) if i not in self._outcomes]

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    async def drain(self) -> List[TransferOutcome]:
        """Wait for every unit and return all outcomes in submission order."""
        await self._finished.wait()
        await self._flush_notifications()
        return self.outcomes

    async def cancel(self) -> None:
        """Cancel units not started yet and abort those in flight."""
        self._cancel_tasks()
        waiting = list(self._tasks.values())
        if self._starter is not None:
            waiting.append(self._starter)
        if waiting:
            await asyncio.gather(*waiting, return_exceptions=True)
        self._cancel_undispatched()
        await self._flush_notifications()

    # Internal methods
    def _launch(self) -> None:
        self._starter = asyncio.create_task(self._start())
        self._starter.add_done_callback(self._on_started)

    async def _start(self) -> None:
        """Fetch the batch credential once, then dispatch every request."""
        if not self._requests:
            self._check_finished()
            return

        provider = getattr(self._orchestrator.client, "token_provider", None)
        if self._credential is None and provider is not None:
            try:
                self._credential = await provider.get_token()
            except TransferError as exc:
                logger.error(f"[batch] Token unavailable, failing {len(self._requests)} upload(s): {exc.message}")
                for index, request in enumerate(self._requests):
                    self._record(index, TransferOutcome.failed(request, exc))
                return

        if self._cancelling:
            self._cancel_undispatched()
            return

        for index, request in enumerate(self._requests):
            task = asyncio.create_task(self._run_unit(request))
            task.add_done_callback(functools.partial(self._on_unit_done, index, request))
            self._tasks[index] = task

    def _on_started(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._cancel_undispatched()
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[batch] Dispatch failed: {error}")
            for index, request in enumerate(self._requests):
                if index not in self._tasks:
                    self._record(index, TransferOutcome.failed(request, error))

    def _current_credential(self) -> Optional[Credential]:
        """Batch credential, or the provider's newer one after a refresh."""
        provider = getattr(self._orchestrator.client, "token_provider", None)
        if provider is not None:
            cached = provider.credential
            if cached is not None and cached is not self._credential and provider.is_fresh(cached):
                return cached
        return self._credential

    async def _run_unit(self, request: UploadRequest) -> TransferOutcome:
        events = self._orchestrator.events
        async with self._semaphore:
            await events.emit(TRANSFER_START, request)
            try:
                result = await self._orchestrator.client.upload(
                    request,
                    self._current_credential(),
                    self._tenant_id,
                )
            except TransferError as exc:
                logger.error(f"[batch] ✗ {request.name}: {exc.message}")
                outcome = TransferOutcome.failed(request, exc)
            except Exception as exc:
                logger.error(f"[batch] ✗ {request.name}: {type(exc).__name__}: {exc}", exc_info=True)
                outcome = TransferOutcome.failed(request, exc)
            else:
                logger.info(f"[batch] ✓ {request.name} ({result.size} bytes)")
                outcome = TransferOutcome.succeeded(request, result)

        await events.emit(TRANSFER_COMPLETE if outcome.ok else TRANSFER_FAIL, outcome)
        return outcome

    def _on_unit_done(self, index: int, request: UploadRequest, task: asyncio.Task) -> None:
        if task.cancelled():
            outcome = TransferOutcome.failed(
                request, TransferCancelled(f"Upload of '{request.name}' was cancelled")
            )
            # The unit never reached its own fail notification
            self._notify(TRANSFER_FAIL, outcome)
        elif task.exception() is not None:
            outcome = TransferOutcome.failed(request, task.exception())
        else:
            outcome = task.result()
        self._record(index, outcome)

    def _notify(self, event_name: str, outcome: TransferOutcome) -> None:
        task = asyncio.create_task(self._orchestrator.events.emit(event_name, outcome))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _flush_notifications(self) -> None:
        if self._notifications:
            await asyncio.gather(*list(self._notifications))

    def _record(self, index: int, outcome: TransferOutcome) -> None:
        if index in self._outcomes:
            return
        self._outcomes[index] = outcome
        self._completed.append(outcome)
        self._queue.put_nowait(outcome)

        if not outcome.ok and self._fail_fast and not self._cancelling:
            logger.warning(f"[batch] Fail-fast: cancelling remaining uploads after '{outcome.request.name}' failed")
            self._cancel_tasks()

        self._check_finished()

    def _cancel_tasks(self) -> None:
        self._cancelling = True
        if self._starter is not None and not self._starter.done():
            self._starter.cancel()
        for task in self._tasks.values():
            if not task.done():
                task.cancel()

    def _cancel_undispatched(self) -> None:
        for index, request in enumerate(self._requests):
            if index not in self._tasks and index not in self._outcomes:
                self._record(
                    index,
                    TransferOutcome.failed(request, TransferCancelled(f"Upload of '{request.name}' was cancelled")),
                )

    def _check_finished(self) -> None:
        if len(self._outcomes) == len(self._requests) and not self._finished.is_set():
            self._finished.set()
            uploaded = sum(1 for o in self._outcomes.values() if o.ok)
            logger.info(f"[batch] Complete: {uploaded} uploaded, {len(self._requests) - uploaded} failed")
            self._orchestrator._release(self)


class TransferOrchestrator:
    """
    Runs many uploads concurrently through one IUploadClient.

    Args:
        client: Upload client (its token provider, if any, is asked once per batch)
        max_parallel: Concurrency bound per batch (default: from content sizes)
        fail_fast: Cancel the rest of a batch after the first failure
    """

    def __init__(
        self,
        client: IUploadClient,
        *,
        max_parallel: Optional[int] = None,
        fail_fast: bool = False,
    ):
        if max_parallel is not None and max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        self.client = client
        self.events = EventEmitter()
        self._max_parallel = max_parallel
        self._fail_fast = fail_fast
        self._active: Set[TransferBatch] = set()

    @classmethod
    def from_config(cls, client: IUploadClient, config: UploadConfig) -> "TransferOrchestrator":
        return cls(client, max_parallel=config.max_parallel, fail_fast=config.fail_fast)

    # Event subscription methods
    def on_transfer_start(self, callback):
        """Called when a unit starts uploading. Receives UploadRequest."""
        self.events.on(TRANSFER_START, callback)

    def on_transfer_complete(self, callback):
        """Called when a unit succeeds. Receives TransferOutcome."""
        self.events.on(TRANSFER_COMPLETE, callback)

    def on_transfer_fail(self, callback):
        """Called when a unit fails. Receives TransferOutcome."""
        self.events.on(TRANSFER_FAIL, callback)

    @property
    def active_batches(self) -> List[TransferBatch]:
        return list(self._active)

    def first_completed(
        self,
        requests: Iterable[UploadRequest],
        credential: Optional[Credential] = None,
        tenant_id: Optional[str] = None,
    ) -> TransferBatch:
        """
        Dispatch ``requests`` and return the running batch.

        Must be called from a running event loop. Iterate the batch to get
        outcomes in completion order.
        """
        batch_requests = self._prepare(requests)
        parallel = self._max_parallel or parallel_count_for(batch_requests)

        batch = TransferBatch(
            self,
            batch_requests,
            credential,
            tenant_id,
            parallel=parallel,
            fail_fast=self._fail_fast,
        )
        self._active.add(batch)
        logger.info(f"[batch] Starting {len(batch_requests)} upload(s), max {parallel} parallel")
        batch._launch()
        return batch

    async def upload_all(
        self,
        requests: Iterable[UploadRequest],
        credential: Optional[Credential] = None,
        tenant_id: Optional[str] = None,
    ) -> List[TransferOutcome]:
        """Upload every request; one outcome per request, in submission order."""
        batch = self.first_completed(requests, credential, tenant_id)
        try:
            return await batch.drain()
        except asyncio.CancelledError:
            await batch.cancel()
            raise

    async def cancel(self) -> None:
        """Cancel every active batch."""
        batches = list(self._active)
        if batches:
            logger.info(f"[batch] Cancelling {len(batches)} active batch(es)")
            await asyncio.gather(*(batch.cancel() for batch in batches))

    async def wait_idle(self) -> None:
        """Wait until every active batch has accounted for all its units."""
        batches = list(self._active)
        if batches:
            await asyncio.gather(*(batch.drain() for batch in batches))

    def _release(self, batch: TransferBatch) -> None:
        self._active.discard(batch)

    @staticmethod
    def _prepare(requests: Iterable[UploadRequest]) -> List[UploadRequest]:
        batch = list(requests)
        streams: Dict[int, str] = {}
        for request in batch:
            if not isinstance(request, UploadRequest):
                raise TypeError(f"Expected UploadRequest, got {type(request).__name__}")
            content = request.content
            if content is None or isinstance(content, (bytes, bytearray, memoryview)):
                continue
            key = id(content)
            if key in streams:
                raise ValueError(
                    f"Requests '{streams[key]}' and '{request.name}' share one content stream"
                )
            streams[key] = request.name
        return batch
