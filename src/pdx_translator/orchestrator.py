"""Bounded-concurrency dispatch of slice translations with retry."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from tqdm.asyncio import tqdm

from .errors import AuthError, ReassemblyError, RequestError, RequestErrorKind
from .glossary import GlossaryIndex
from .llm_client import ChatClient
from .models import Slice, TranslationRequest, TranslationResult
from .translator import DEFAULT_TEMPLATE, build_request, translate_slice

logger = logging.getLogger(__name__)

SliceKey = Tuple[str, int]


class SliceState(Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED_FINAL = "failed_final"


_TRANSITIONS = {
    SliceState.PENDING: {SliceState.IN_FLIGHT},
    SliceState.IN_FLIGHT: {SliceState.SUCCEEDED, SliceState.RETRYING, SliceState.FAILED_FINAL},
    SliceState.RETRYING: {SliceState.IN_FLIGHT},
}


@dataclass
class SliceRun:
    """State machine of one slice's translation attempts."""

    slice: Slice
    state: SliceState = SliceState.PENDING
    attempts: int = 0
    history: List[SliceState] = field(default_factory=lambda: [SliceState.PENDING])
    last_error: str = ""

    def transition(self, new_state: SliceState) -> None:
        if new_state not in _TRANSITIONS.get(self.state, ()):
            raise RuntimeError(
                f"Illegal transition {self.state.name} -> {new_state.name} for {self.slice.slice_id}"
            )
        self.state = new_state
        self.history.append(new_state)
        if new_state is SliceState.IN_FLIGHT:
            self.attempts += 1

    @property
    def is_resolved(self) -> bool:
        return self.state in (SliceState.SUCCEEDED, SliceState.FAILED_FINAL)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff: ``base_delay * 2**(attempt-1)``, doubled for rate
    limits, capped at ``max_delay``, plus up to ``jitter`` of random extra.
    """

    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.1

    def delay(self, attempt: int, kind: RequestErrorKind) -> float:
        delay = self.base_delay * 2 ** (attempt - 1)
        if kind is RequestErrorKind.RATE_LIMITED:
            delay *= 2
        delay = min(delay, self.max_delay)
        return delay + random.uniform(0, delay * self.jitter)


@dataclass(frozen=True)
class WorkUnit:
    """One slice of one output file, to be translated into ``target_lang``."""

    slice: Slice
    source_lang: str
    target_lang: str

    @property
    def key(self) -> SliceKey:
        return (self.slice.file_id, self.slice.index)


class ResultTable:
    """
    Write-once results keyed by (file id, slice index).

    Each file has its own completion event, set once all of its slices
    are resolved.
    """

    def __init__(self) -> None:
        self._results: Dict[str, Dict[int, TranslationResult]] = {}
        self._expected: Dict[str, int] = {}
        self._done: Dict[str, asyncio.Event] = {}

    def register(self, file_id: str, slice_count: int) -> None:
        """Expect ``slice_count`` results for ``file_id``. A file with no slices is complete at once."""
        if file_id in self._expected:
            raise ReassemblyError(f"File {file_id} registered twice")
        self._results[file_id] = {}
        self._expected[file_id] = slice_count
        self._done[file_id] = asyncio.Event()
        if slice_count == 0:
            self._done[file_id].set()

    def put(self, file_id: str, result: TranslationResult) -> None:
        """
        Store the outcome of one slice and wake the file's writer when it is the last.

        Args:
            file_id: File the slice belongs to
            result: Resolved slice, translated or failed

        Raises:
            ReassemblyError: unregistered file, repeated slice or index out of range
        """
        if file_id not in self._expected:
            raise ReassemblyError(f"Result for unregistered file {file_id}")
        file_results = self._results[file_id]
        if result.slice_index in file_results:
            raise ReassemblyError(f"Slice {file_id}#{result.slice_index} resolved twice")
        if not 0 <= result.slice_index < self._expected[file_id]:
            raise ReassemblyError(f"Slice index {result.slice_index} out of range for {file_id}")
        file_results[result.slice_index] = result
        if len(file_results) == self._expected[file_id]:
            self._done[file_id].set()

    def results(self, file_id: str) -> Mapping[int, TranslationResult]:
        return dict(self._results[file_id])

    def is_complete(self, file_id: str) -> bool:
        return self._done[file_id].is_set()

    async def wait(self, file_id: str) -> None:
        await self._done[file_id].wait()

    @property
    def file_ids(self) -> List[str]:
        return list(self._expected)


class Orchestrator:
    """
    Runs every work unit of a task through a pool of ``concurrency`` workers.

    Workers pull units from a shared queue. Slices complete in any order;
    at most ``concurrency`` requests are in flight at a time. A slice that
    keeps failing ends in FAILED_FINAL without stopping its siblings; an
    AuthError stops everything.
    """

    def __init__(
        self,
        client: ChatClient,
        index: GlossaryIndex,
        *,
        concurrency: int = 1,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 600.0,
        template: str = DEFAULT_TEMPLATE,
        results: Optional[ResultTable] = None,
        show_progress: bool = False,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.client = client
        self.index = index
        self.concurrency = concurrency
        self.retry = retry or RetryPolicy()
        self.timeout = timeout
        self.template = template
        self.results = results or ResultTable()
        self.show_progress = show_progress

        self.runs: Dict[SliceKey, SliceRun] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._cancel = asyncio.Event()

    def cancel(self) -> None:
        """Stop issuing new requests. In-flight requests finish or time out."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested, no new requests will be sent")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def state_counts(self) -> Counter:
        return Counter(run.state for run in self.runs.values())

    async def run(self, units: Sequence[WorkUnit]) -> ResultTable:
        """
        Translate all units.

        Files not yet registered in ``self.results`` are registered with the
        number of their slices among ``units``.

        Raises:
            AuthError: credentials were rejected; remaining units are abandoned
        """
        per_file = Counter(unit.slice.file_id for unit in units)
        known = set(self.results.file_ids)
        for file_id, count in per_file.items():
            if file_id not in known:
                self.results.register(file_id, count)

        queue: asyncio.Queue[WorkUnit] = asyncio.Queue()
        for unit in units:
            if unit.key in self.runs:
                raise ReassemblyError(f"Slice {unit.slice.slice_id} queued twice")
            self.runs[unit.key] = SliceRun(slice=unit.slice)
            queue.put_nowait(unit)

        if not units:
            return self.results

        logger.info(f"Translating {len(units)} slices with {self.concurrency} worker(s)...")
        progress = tqdm(total=len(units), desc="Translating", disable=not self.show_progress)
        workers = [
            asyncio.create_task(self._worker(queue, progress))
            for _ in range(min(self.concurrency, len(units)))
        ]

        try:
            await asyncio.gather(*workers)
        except BaseException:
            self.cancel()
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        finally:
            progress.close()

        return self.results

    async def _worker(self, queue: "asyncio.Queue[WorkUnit]", progress: tqdm) -> None:
        while not self._cancel.is_set():
            try:
                unit = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            result = await self._process(unit)
            if result is None:
                return
            self.results.put(unit.slice.file_id, result)
            progress.update(1)

    async def _process(self, unit: WorkUnit) -> Optional[TranslationResult]:
        """Drive one slice to a terminal state. None if cancelled while waiting to retry."""
        run = self.runs[unit.key]
        slice_id = unit.slice.slice_id
        total = self.retry.max_retries + 1
        request = build_request(unit.slice, self.index, unit.source_lang, unit.target_lang)

        while True:
            run.transition(SliceState.IN_FLIGHT)
            attempt = run.attempts
            try:
                texts = await self._attempt(request)
            except AuthError as e:
                logger.error(f"[{slice_id}] attempt {attempt}/{total}: authentication failed: {e}")
                self.cancel()
                raise
            except RequestError as e:
                run.last_error = str(e)
                if attempt >= total:
                    run.transition(SliceState.FAILED_FINAL)
                    logger.error(f"[{slice_id}] attempt {attempt}/{total} failed: {e}. Giving up")
                    return TranslationResult.failed(unit.slice, str(e), attempts=attempt)

                run.transition(SliceState.RETRYING)
                delay = self.retry.delay(attempt, e.kind)
                logger.warning(
                    f"[{slice_id}] attempt {attempt}/{total} failed: {e}. Retrying in {delay:.1f}s..."
                )
                if await self._wait_cancelled(delay):
                    return None
                continue

            run.transition(SliceState.SUCCEEDED)
            logger.info(f"[{slice_id}] attempt {attempt}/{total} succeeded ({len(texts)} entries)")
            return TranslationResult.succeeded(unit.slice, texts, attempts=attempt)

    async def _attempt(self, request: TranslationRequest) -> List[str]:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            return await asyncio.wait_for(
                translate_slice(self.client, request, self.template, self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise RequestError(
                RequestErrorKind.TIMEOUT, f"No response within {self.timeout}s"
            ) from e
        finally:
            self.in_flight -= 1

    async def _wait_cancelled(self, delay: float) -> bool:
        """Sleep for the backoff delay; True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
