"""
Executor Agent Module

This module contains the ExecutorAgent that applies a compiled batch to the
mutation gateways with per-operation failure isolation.

Features:
- Sequential execution in batch order by default
- Optional bounded concurrency when every operation targets one collection
- Optional fail-fast (remaining operations are reported as skipped)
- Cancellation checked before each dispatch
- Mutations are never retried; each failure keeps its machine-readable reason
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from agents.base import Agent
from core import config
from core.errors import MutationError, PipelineError, UpstreamAPIError
from core.schemas import (
    Batch,
    BatchEntry,
    ExecutionResult,
    IntentKind,
    OperationOutcome,
    OperationStatus,
    ResolvedOperation,
    SkippedOperation,
)
from services.progress import ProgressSink

logger = logging.getLogger(__name__)


class ExecutorAgent(Agent):
    def __init__(
        self,
        gateways: Mapping[str, Any],
        max_concurrency: int = config.DEFAULT_MAX_CONCURRENCY,
        mutation_timeout: float = config.MUTATION_TIMEOUT,
        fail_fast: bool = False,
    ):
        self.gateways = dict(gateways)
        self.max_concurrency = max(1, min(int(max_concurrency), config.MAX_CONCURRENCY_CAP))
        self.mutation_timeout = mutation_timeout
        self.fail_fast = fail_fast

    async def run(self, payload: Batch, context: Dict[str, Any]):
        return await self.execute(
            payload,
            fail_fast=context.get("fail_fast"),
            cancel_event=context.get("cancel_event"),
            progress=context.get("progress"),
        )

    def missing_systems(self, batch: Batch) -> List[str]:
        return sorted({op.system for op in batch.operations if op.system not in self.gateways})

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    async def _dispatch(self, op: ResolvedOperation) -> Any:
        gateway = self.gateways.get(op.system)
        if gateway is None:
            raise PipelineError(f"No gateway configured for the {op.system} system")
        target = op.target_collection_id
        flt = op.filter or {}

        if op.kind == IntentKind.INSERT:
            call = gateway.insert(str(target), op.payload)
        elif op.kind == IntentKind.UPDATE:
            call = gateway.update(str(target), op.payload, flt)
        elif op.kind == IntentKind.DELETE:
            call = gateway.delete(str(target), flt)
        elif op.kind == IntentKind.CREATE_ITEM:
            call = gateway.create_item(target, op.payload["name"])
        elif op.kind == IntentKind.UPDATE_ITEM_NAME:
            call = gateway.rename_item(target, flt["item_id"], op.payload["name"])
        else:
            call = gateway.set_column_value(target, flt["item_id"], op.payload["column_id"], op.payload.get("value"))
        return await asyncio.wait_for(call, timeout=self.mutation_timeout)

    async def _apply(self, entry: BatchEntry, progress: Optional[ProgressSink]) -> OperationOutcome:
        if isinstance(entry, SkippedOperation):
            return self._skipped(entry, entry.reason, progress)

        try:
            output = await self._dispatch(entry)
        except MutationError as e:
            outcome = OperationOutcome(operation=entry, status=OperationStatus.FAILED, error=str(e), reason=e.reason)
        except UpstreamAPIError as e:
            outcome = OperationOutcome(operation=entry, status=OperationStatus.FAILED, error=str(e), reason="upstream_error")
        except asyncio.TimeoutError:
            outcome = OperationOutcome(
                operation=entry,
                status=OperationStatus.FAILED,
                error=f"Timed out after {self.mutation_timeout}s",
                reason="timeout",
            )
        except PipelineError as e:
            outcome = OperationOutcome(operation=entry, status=OperationStatus.FAILED, error=str(e), reason="pipeline_error")
        except Exception as e:
            logger.exception(f"Unexpected error executing {entry.describe()}")
            outcome = OperationOutcome(operation=entry, status=OperationStatus.FAILED, error=str(e), reason="unexpected_error")
        else:
            outcome = OperationOutcome(operation=entry, status=OperationStatus.SUCCEEDED, output=output)

        if progress is not None:
            if outcome.status == OperationStatus.SUCCEEDED:
                progress.emit("executing", f"Succeeded: {entry.describe()}", "success")
            else:
                progress.emit("executing", f"Failed: {entry.describe()}: {outcome.error}", "error")
        return outcome

    @staticmethod
    def _skipped(entry: BatchEntry, reason: str, progress: Optional[ProgressSink]) -> OperationOutcome:
        if progress is not None:
            progress.emit("executing", f"Skipped {entry.kind.value} on {entry.target_collection_id}: {reason}", "warning")
        return OperationOutcome(operation=entry, status=OperationStatus.SKIPPED, reason=reason)

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------
    async def execute(
        self,
        batch: Batch,
        fail_fast: Optional[bool] = None,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressSink] = None,
    ) -> ExecutionResult:
        """Apply ``batch``; never raises for a per-operation failure."""
        fail_fast = self.fail_fast if fail_fast is None else fail_fast
        concurrent = self.max_concurrency > 1 and not fail_fast and len(batch.target_collections) == 1

        if concurrent:
            outcomes = await self._execute_concurrent(batch, cancel_event, progress)
        else:
            outcomes = await self._execute_sequential(batch, fail_fast, cancel_event, progress)

        result = ExecutionResult(per_operation=outcomes)
        logger.info(f"Execution finished: {result.summary()}")
        return result

    async def _execute_sequential(
        self,
        batch: Batch,
        fail_fast: bool,
        cancel_event: Optional[asyncio.Event],
        progress: Optional[ProgressSink],
    ) -> List[OperationOutcome]:
        outcomes: List[OperationOutcome] = []
        stop_reason: Optional[str] = None
        for entry in batch.entries:
            if stop_reason is None and cancel_event is not None and cancel_event.is_set():
                stop_reason = "cancelled"
            if stop_reason is not None:
                outcomes.append(self._skipped(entry, stop_reason, progress))
                continue
            outcome = await self._apply(entry, progress)
            outcomes.append(outcome)
            if fail_fast and outcome.status == OperationStatus.FAILED:
                stop_reason = "fail-fast"
        return outcomes

    async def _execute_concurrent(
        self,
        batch: Batch,
        cancel_event: Optional[asyncio.Event],
        progress: Optional[ProgressSink],
    ) -> List[OperationOutcome]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(entry: BatchEntry) -> OperationOutcome:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return self._skipped(entry, "cancelled", progress)
                return await self._apply(entry, progress)

        # gather keeps results in batch order
        return list(await asyncio.gather(*(bounded(e) for e in batch.entries)))
