import asyncio

import pytest

from agents.executor.agent import ExecutorAgent
from core.schemas import Batch, IntentKind, OperationStatus, ResolvedOperation, SkippedOperation
from services.gateways.sqlite import SQLiteGateway
from services.progress import ProgressSink


def _column_update(column_id, value="x", item="11"):
    return ResolvedOperation(
        kind=IntentKind.UPDATE_COLUMN_VALUE,
        target_collection_id="1001",
        payload={"column_id": column_id, "value": value},
        filter={"item_id": item},
    )


@pytest.mark.asyncio
async def test_skipped_update_does_not_stop_the_others(boards):
    batch = Batch(entries=[
        _column_update("status", "Done"),
        SkippedOperation(kind=IntentKind.UPDATE_COLUMN_VALUE, target_collection_id="1001",
                         reason="Column 'Mood' not found on board 1001"),
        _column_update("phone", "555"),
    ])

    result = await ExecutorAgent({"board": boards}).execute(batch)

    assert (result.succeeded_count, result.failed_count, result.skipped_count) == (2, 0, 1)
    assert [o.status for o in result.per_operation] == [
        OperationStatus.SUCCEEDED, OperationStatus.SKIPPED, OperationStatus.SUCCEEDED
    ]
    assert result.is_partial
    assert [m[3] for m in boards.mutations] == ["status", "phone"]


@pytest.mark.asyncio
async def test_failures_are_isolated_without_fail_fast(boards):
    boards.fail_columns = {"status"}
    batch = Batch(entries=[_column_update("status"), _column_update("phone")])

    result = await ExecutorAgent({"board": boards}).execute(batch)

    assert [o.status for o in result.per_operation] == [OperationStatus.FAILED, OperationStatus.SUCCEEDED]
    assert result.per_operation[0].reason == "rejected"
    assert "status" in result.per_operation[0].error


@pytest.mark.asyncio
async def test_fail_fast_skips_the_rest(boards):
    boards.fail_columns = {"status"}
    batch = Batch(entries=[_column_update("status"), _column_update("phone"), _column_update("email")])

    result = await ExecutorAgent({"board": boards}).execute(batch, fail_fast=True)

    assert [o.status for o in result.per_operation] == [
        OperationStatus.FAILED, OperationStatus.SKIPPED, OperationStatus.SKIPPED
    ]
    assert result.per_operation[1].reason == "fail-fast"
    assert len(boards.mutations) == 1


@pytest.mark.asyncio
async def test_cancellation_skips_undispatched_operations(boards):
    cancel = asyncio.Event()
    cancel.set()
    result = await ExecutorAgent({"board": boards}).execute(
        Batch(entries=[_column_update("status")]), cancel_event=cancel
    )
    assert result.per_operation[0].status == OperationStatus.SKIPPED
    assert result.per_operation[0].reason == "cancelled"
    assert boards.mutations == []


@pytest.mark.asyncio
async def test_bounded_concurrency_keeps_order_and_limit():
    class SlowBoards:
        def __init__(self):
            self.active = 0
            self.peak = 0

        async def set_column_value(self, board_id, item_id, column_id, value):
            self.active += 1
            self.peak = max(self.peak, self.active)
            await asyncio.sleep(0.01)
            self.active -= 1
            return {"item": item_id}

    slow = SlowBoards()
    batch = Batch(entries=[_column_update("status", item=str(i)) for i in range(10)])

    result = await ExecutorAgent({"board": slow}, max_concurrency=3).execute(batch)

    assert result.succeeded_count == 10
    assert [o.output["item"] for o in result.per_operation] == [str(i) for i in range(10)]
    assert 1 < slow.peak <= 3


@pytest.mark.asyncio
async def test_mixed_collections_run_sequentially():
    order = []

    class Recorder:
        async def set_column_value(self, board_id, item_id, column_id, value):
            order.append(("start", board_id))
            await asyncio.sleep(0)
            order.append(("end", board_id))

    batch = Batch(entries=[
        _column_update("status"),
        ResolvedOperation(kind=IntentKind.UPDATE_COLUMN_VALUE, target_collection_id="2002",
                          payload={"column_id": "status", "value": "x"}, filter={"item_id": "21"}),
    ])
    await ExecutorAgent({"board": Recorder()}, max_concurrency=8).execute(batch)
    assert order == [("start", "1001"), ("end", "1001"), ("start", "2002"), ("end", "2002")]


@pytest.mark.asyncio
async def test_slow_mutation_times_out():
    class Hanging:
        async def create_item(self, board_id, item_name):
            await asyncio.sleep(5)

    op = ResolvedOperation(kind=IntentKind.CREATE_ITEM, target_collection_id="1001", payload={"name": "A"})
    result = await ExecutorAgent({"board": Hanging()}, mutation_timeout=0.05).execute(Batch(entries=[op]))
    assert result.per_operation[0].reason == "timeout"


@pytest.mark.asyncio
async def test_record_mutations_against_sqlite(crm_db):
    gateway = SQLiteGateway(crm_db)
    batch = Batch(entries=[
        ResolvedOperation(kind=IntentKind.INSERT, target_collection_id="companies",
                          payload={"name": "TechCorp", "company_type_id": 3}),
        ResolvedOperation(kind=IntentKind.INSERT, target_collection_id="companies",
                          payload={"name": "Ghost", "company_type_id": 999}),
        ResolvedOperation(kind=IntentKind.DELETE, target_collection_id="companies", filter={"id": 2}),
        ResolvedOperation(kind=IntentKind.UPDATE, target_collection_id="contacts",
                          payload={"title": "CEO"}, filter={"id": 404}),
    ])

    result = await ExecutorAgent({"records": gateway}).execute(batch)

    statuses = [o.status for o in result.per_operation]
    assert statuses == [OperationStatus.SUCCEEDED] + [OperationStatus.FAILED] * 3
    assert result.per_operation[0].output["name"] == "TechCorp"
    assert [o.reason for o in result.per_operation[1:]] == [
        "foreign_key_violation", "foreign_key_violation", "no_match"
    ]


@pytest.mark.asyncio
async def test_every_outcome_emits_a_progress_event(boards):
    boards.fail_columns = {"status"}
    progress = ProgressSink()
    batch = Batch(entries=[
        SkippedOperation(kind=IntentKind.UPDATE_COLUMN_VALUE, target_collection_id="1001",
                         reason="Column 'Mood' not found on board 1001"),
        _column_update("status"),
        _column_update("phone"),
    ])

    await ExecutorAgent({"board": boards}).execute(batch, fail_fast=True, progress=progress)

    events = [(e.stage, e.severity) for e in progress.events]
    assert events == [("executing", "warning"), ("executing", "error"), ("executing", "warning")]
    assert "Mood" in progress.events[0].message
    assert "fail-fast" in progress.events[2].message


@pytest.mark.asyncio
async def test_cancelled_outcomes_emit_warnings(boards):
    cancel = asyncio.Event()
    cancel.set()
    progress = ProgressSink()
    batch = Batch(entries=[_column_update("status", item=str(i)) for i in range(3)])

    await ExecutorAgent({"board": boards}, max_concurrency=2).execute(batch, cancel_event=cancel, progress=progress)

    assert len(progress.by_severity("warning")) == 3
    assert all("cancelled" in e.message for e in progress.events)
