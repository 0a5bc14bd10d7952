"""Tests for the request orchestrator."""

import asyncio

import pytest

from pdx_translator.errors import AuthError, ReassemblyError, RequestError, RequestErrorKind
from pdx_translator.glossary import GlossaryIndex
from pdx_translator.models import Slice, TranslationResult
from pdx_translator.orchestrator import (
    Orchestrator,
    ResultTable,
    RetryPolicy,
    SliceRun,
    SliceState,
    WorkUnit,
)

from conftest import BlockingClient, EchoClient, ScriptedClient, make_entry, make_slices

NO_WAIT = RetryPolicy(max_retries=2, base_delay=0, max_delay=0)


def units_for(slices, target="simp_chinese"):
    return [WorkUnit(s, "english", target) for s in slices]


def make_orchestrator(client, **kwargs):
    kwargs.setdefault("retry", NO_WAIT)
    return Orchestrator(client, GlossaryIndex(), **kwargs)


class TestSliceRun:

    def test_legal_path(self):
        run = SliceRun(slice=Slice("f", 0, (make_entry("a"),)))
        run.transition(SliceState.IN_FLIGHT)
        run.transition(SliceState.RETRYING)
        run.transition(SliceState.IN_FLIGHT)
        run.transition(SliceState.SUCCEEDED)
        assert run.attempts == 2
        assert run.is_resolved

    @pytest.mark.parametrize("path", [
        [SliceState.SUCCEEDED],
        [SliceState.RETRYING],
        [SliceState.IN_FLIGHT, SliceState.SUCCEEDED, SliceState.IN_FLIGHT],
        [SliceState.IN_FLIGHT, SliceState.FAILED_FINAL, SliceState.RETRYING],
    ])
    def test_illegal_transitions(self, path):
        run = SliceRun(slice=Slice("f", 0, (make_entry("a"),)))
        with pytest.raises(RuntimeError):
            for state in path:
                run.transition(state)


class TestRetryPolicy:

    def test_exponential(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=60.0, jitter=0)
        kind = RequestErrorKind.TIMEOUT
        assert [policy.delay(n, kind) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_capped(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=60.0, jitter=0)
        assert policy.delay(10, RequestErrorKind.TRANSPORT) == 60.0

    def test_rate_limit_waits_longer(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=60.0, jitter=0)
        assert policy.delay(1, RequestErrorKind.RATE_LIMITED) == 4.0

    def test_jitter_bounded(self):
        policy = RetryPolicy(base_delay=10.0, max_delay=60.0, jitter=0.1)
        for _ in range(20):
            assert 10.0 <= policy.delay(1, RequestErrorKind.MALFORMED) <= 11.0


class TestResultTable:

    def test_complete_after_all_slices(self):
        slices = make_slices(2)
        table = ResultTable()
        table.register("file.yml", 2)
        table.put("file.yml", TranslationResult.failed(slices[1], "x"))
        assert not table.is_complete("file.yml")
        table.put("file.yml", TranslationResult.failed(slices[0], "x"))
        assert table.is_complete("file.yml")
        assert set(table.results("file.yml")) == {0, 1}

    def test_empty_file_complete_immediately(self):
        table = ResultTable()
        table.register("empty.yml", 0)
        assert table.is_complete("empty.yml")

    def test_write_once(self):
        slices = make_slices(2)
        table = ResultTable()
        table.register("file.yml", 2)
        table.put("file.yml", TranslationResult.failed(slices[0], "x"))
        with pytest.raises(ReassemblyError):
            table.put("file.yml", TranslationResult.failed(slices[0], "y"))

    def test_out_of_range_and_unregistered(self):
        slices = make_slices(3)
        table = ResultTable()
        table.register("file.yml", 2)
        with pytest.raises(ReassemblyError):
            table.put("file.yml", TranslationResult.failed(slices[2], "x"))
        with pytest.raises(ReassemblyError):
            table.put("other.yml", TranslationResult.failed(slices[0], "x"))

    def test_register_twice(self):
        table = ResultTable()
        table.register("file.yml", 1)
        with pytest.raises(ReassemblyError):
            table.register("file.yml", 1)


class TestOrchestrator:

    @pytest.mark.asyncio
    async def test_all_succeed(self):
        slices = make_slices(5, per_slice=2)
        orchestrator = make_orchestrator(EchoClient(str.upper), concurrency=2)
        results = await orchestrator.run(units_for(slices))

        assert results.is_complete("file.yml")
        by_index = results.results("file.yml")
        assert len(by_index) == 5
        assert by_index[3].translations == ("TEXT OF KEY_3_0", "TEXT OF KEY_3_1")
        assert orchestrator.state_counts() == {SliceState.SUCCEEDED: 5}

    @pytest.mark.asyncio
    async def test_no_units(self):
        client = EchoClient()
        results = await make_orchestrator(client).run([])
        assert results.file_ids == []
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        client = BlockingClient(delay=0.02)
        orchestrator = make_orchestrator(client, concurrency=3)
        await orchestrator.run(units_for(make_slices(10)))

        assert client.calls == 10
        assert client.peak <= 3
        assert orchestrator.max_in_flight <= 3
        assert orchestrator.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_sequential_by_default(self):
        client = BlockingClient(delay=0.01)
        orchestrator = make_orchestrator(client)
        await orchestrator.run(units_for(make_slices(4)))
        assert client.peak == 1

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        client = ScriptedClient("not json at all")
        orchestrator = make_orchestrator(client)
        slices = make_slices(1)
        results = await orchestrator.run(units_for(slices))

        result = results.results("file.yml")[0]
        assert result.success
        assert result.attempts == 2
        assert len(client.calls) == 2
        assert orchestrator.runs[("file.yml", 0)].history == [
            SliceState.PENDING,
            SliceState.IN_FLIGHT,
            SliceState.RETRYING,
            SliceState.IN_FLIGHT,
            SliceState.SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        timeouts = [RequestError(RequestErrorKind.TIMEOUT, "slow")] * 3
        client = ScriptedClient(*timeouts)
        orchestrator = make_orchestrator(client)
        results = await orchestrator.run(units_for(make_slices(1)))

        result = results.results("file.yml")[0]
        assert not result.success
        assert result.attempts == 3
        assert "timeout" in result.error
        assert len(client.calls) == 3
        assert orchestrator.runs[("file.yml", 0)].state is SliceState.FAILED_FINAL

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        client = ScriptedClient(RequestError(RequestErrorKind.TRANSPORT, "reset"))
        orchestrator = make_orchestrator(client, retry=RetryPolicy(max_retries=0))
        results = await orchestrator.run(units_for(make_slices(1)))
        assert not results.results("file.yml")[0].success
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_siblings(self):
        failing = [RequestError(RequestErrorKind.TRANSPORT, "reset")] * 3
        client = ScriptedClient(*failing)
        orchestrator = make_orchestrator(client)
        results = await orchestrator.run(units_for(make_slices(3)))

        outcomes = results.results("file.yml")
        assert [outcomes[i].success for i in range(3)] == [False, True, True]

    @pytest.mark.asyncio
    async def test_request_timeout(self):
        client = BlockingClient(delay=1.0)
        orchestrator = make_orchestrator(
            client, timeout=0.01, retry=RetryPolicy(max_retries=1, base_delay=0, max_delay=0)
        )
        results = await orchestrator.run(units_for(make_slices(1)))

        result = results.results("file.yml")[0]
        assert not result.success
        assert result.error.startswith("timeout")
        assert client.calls == 2

    @pytest.mark.asyncio
    async def test_auth_error_aborts(self):
        client = ScriptedClient(AuthError("invalid key"))
        orchestrator = make_orchestrator(client)
        with pytest.raises(AuthError):
            await orchestrator.run(units_for(make_slices(5)))

        assert len(client.calls) == 1
        assert orchestrator.cancelled
        assert not orchestrator.results.is_complete("file.yml")

    @pytest.mark.asyncio
    async def test_cancel_stops_new_requests(self):
        client = BlockingClient(delay=0.05)
        orchestrator = make_orchestrator(client, concurrency=2)
        run = asyncio.create_task(orchestrator.run(units_for(make_slices(10))))
        await asyncio.sleep(0.01)
        orchestrator.cancel()
        results = await run

        assert client.calls == 2
        assert len(results.results("file.yml")) == 2
        assert not results.is_complete("file.yml")

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        client = ScriptedClient(RequestError(RequestErrorKind.RATE_LIMITED, "slow down"))
        orchestrator = make_orchestrator(
            client, retry=RetryPolicy(max_retries=3, base_delay=30, max_delay=60)
        )
        run = asyncio.create_task(orchestrator.run(units_for(make_slices(1))))
        await asyncio.sleep(0.01)
        orchestrator.cancel()
        results = await asyncio.wait_for(run, timeout=1)

        assert len(client.calls) == 1
        assert results.results("file.yml") == {}
        assert orchestrator.runs[("file.yml", 0)].state is SliceState.RETRYING

    @pytest.mark.asyncio
    async def test_multiple_files_and_targets(self):
        slices_a = make_slices(2, file_id="simp_chinese/replace/a.yml")
        slices_b = make_slices(3, file_id="german/replace/a.yml")
        units = units_for(slices_a) + units_for(slices_b, target="german")
        orchestrator = make_orchestrator(EchoClient(), concurrency=4)
        results = await orchestrator.run(units)

        assert results.is_complete("simp_chinese/replace/a.yml")
        assert results.is_complete("german/replace/a.yml")
        assert len(results.results("german/replace/a.yml")) == 3

    @pytest.mark.asyncio
    async def test_same_slice_queued_twice(self):
        slices = make_slices(1)
        orchestrator = make_orchestrator(EchoClient())
        with pytest.raises(ReassemblyError):
            await orchestrator.run(units_for(slices) + units_for(slices))

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            Orchestrator(EchoClient(), GlossaryIndex(), concurrency=0)
