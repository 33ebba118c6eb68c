"""Core orchestrator for the command pipeline.

This module defines the :class:`Orchestrator` which wires together the
agents that turn one natural language instruction into executed mutations.
The orchestration flow is:

    intent parsing → reference resolution (→ disambiguation) → compilation
    → execution.

Every component can be swapped out through a configuration file (YAML or
dictionary) using dotted Python paths and constructor parameters, or passed
in directly (tests inject stubs this way).  Example YAML::

    model:
      class: services.llm_service.LLMService
    systems:
      records:
        class: services.gateways.sqlite.SQLiteGateway
        params:
          db_path: data/crm.sqlite
    steps:
      intent_parser:
        class: agents.intent_parser.agent.IntentParserAgent
      reference_resolver:
        class: agents.reference_resolver.agent.ReferenceResolverAgent
      disambiguator:
        class: agents.disambiguator.agent.DisambiguatorAgent
      compiler:
        class: agents.operation_compiler.agent.OperationCompilerAgent
      executor:
        class: agents.executor.agent.ExecutorAgent

Shared collaborators (the model, the gateways, the lookup-field table and the
entity profiles) are built once and handed to the steps that need them.
"""
from __future__ import annotations

import asyncio
import importlib
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field

from core.errors import CommandCancelledError, PipelineError, UpstreamAPIError
from core.schemas import RECORDS, CandidateSet, Command, ExecutionResult
from services.gateways.base import Id
from services.lookup_fields import LookupFieldTable
from services.progress import ProgressEvent, ProgressSink
from services.validation_engine import ValidationEngine

logger = logging.getLogger(__name__)


def _import_from_path(path: str):
    """Import ``path`` of the form ``module.submodule:Class`` or
    ``module.submodule.Class`` and return the class."""
    if ":" in path:
        module_path, class_name = path.split(":", 1)
    else:
        module_path, class_name = path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)


def _build(cfg: Dict[str, Any], **injected: Any):
    cls = _import_from_path(cfg["class"])
    params = {**injected, **(cfg.get("params") or {})}
    return cls(**params)


class CommandState(str, Enum):
    RECEIVED = "received"
    EXTRACTING = "extracting"
    RESOLVING = "resolving"
    AWAITING_DISAMBIGUATION = "awaiting_disambiguation"
    COMPILING = "compiling"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CommandRun(BaseModel):
    """Outcome of one command: final state, result or error, and events."""
    command: Command
    state: CommandState = CommandState.RECEIVED
    history: List[CommandState] = Field(default_factory=lambda: [CommandState.RECEIVED])
    result: Optional[ExecutionResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    events: List[ProgressEvent] = []

    def advance(self, state: CommandState) -> None:
        self.state = state
        self.history.append(state)


class Orchestrator:
    """Configurable command pipeline orchestrator."""

    STEP_ORDER = [
        "intent_parser",
        "reference_resolver",
        "disambiguator",
        "compiler",
        "executor",
    ]

    def __init__(
        self,
        config: Union[Dict[str, Any], str, Path, None] = None,
        *,
        model: Any = None,
        gateways: Optional[Dict[str, Any]] = None,
        **steps: Any,
    ):
        if isinstance(config, (str, Path)):
            with open(config, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)
        self.config: Dict[str, Any] = config or {}

        unknown = set(steps) - set(self.STEP_ORDER)
        if unknown:
            raise ValueError(f"Unknown pipeline step(s): {sorted(unknown)}")

        self.model = model
        self.gateways = gateways if gateways is not None else self._build_gateways()
        self.validator = ValidationEngine()
        self.lookup_fields = LookupFieldTable(self.config.get("lookup_fields"), self._tables())
        self.entity_profiles = self.config.get("entity_profiles") or {}

        self.steps: Dict[str, Any] = {}
        step_cfg = self.config.get("steps", {})
        for name in self.STEP_ORDER:
            if name in steps:
                self.steps[name] = steps[name]
                continue
            cfg = step_cfg.get(name)
            if not cfg:
                raise ValueError(f"Missing configuration for step '{name}'")
            self.steps[name] = _build(cfg, **self._injections(name))

    # -------- construction helpers --------
    def _get_model(self):
        if self.model is None:
            cfg = self.config.get("model")
            if not cfg:
                raise ValueError("Missing configuration for 'model'")
            self.model = _build(cfg)
        return self.model

    def _build_gateways(self) -> Dict[str, Any]:
        gateways: Dict[str, Any] = {}
        for system, cfg in (self.config.get("systems") or {}).items():
            if not cfg:
                continue
            try:
                gateways[system] = _build(cfg)
            except ValueError as e:
                if not cfg.get("optional"):
                    raise
                logger.warning(f"{system} system disabled: {e}")
        return gateways

    def _tables(self) -> Optional[Dict[str, List[str]]]:
        """Declared tables, or the ones read from the records store when none are declared."""
        tables = (self.config.get("database") or {}).get("tables")
        if tables:
            return tables
        gateway = self.gateways.get(RECORDS)
        if gateway is None or not hasattr(gateway, "get_schema"):
            return None
        try:
            schema = gateway.get_schema()
        except UpstreamAPIError as e:
            logger.warning(f"Could not read the records schema: {e}")
            return None
        return {name: info["columns"] for name, info in schema["tables"].items()}

    def _injections(self, step: str) -> Dict[str, Any]:
        if step == "intent_parser":
            return {
                "model": self._get_model(),
                "validator": self.validator,
                "db_schema": self.lookup_fields.describe() if self.lookup_fields.tables else "",
                "board_context": self.config.get("board_context", ""),
            }
        if step == "reference_resolver":
            return {
                "gateways": self.gateways,
                "lookup_fields": self.lookup_fields,
                "entity_profiles": self.entity_profiles,
            }
        if step == "disambiguator":
            return {"model": self._get_model(), "validator": self.validator}
        if step == "compiler":
            return {"lookup_fields": self.lookup_fields}
        if step == "executor":
            return {"gateways": self.gateways}
        return {}

    # Convenience properties for typed access
    @property
    def intent_parser(self):
        return self.steps["intent_parser"]

    @property
    def reference_resolver(self):
        return self.steps["reference_resolver"]

    @property
    def disambiguator(self):
        return self.steps["disambiguator"]

    @property
    def compiler(self):
        return self.steps["compiler"]

    @property
    def executor(self):
        return self.steps["executor"]

    async def aclose(self) -> None:
        closed = set()
        for gateway in self.gateways.values():
            if id(gateway) in closed:
                continue
            closed.add(id(gateway))
            await gateway.aclose()

    # -------- pipeline --------
    @staticmethod
    def _check_cancel(cancel_event: Optional[asyncio.Event], stage: CommandState) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CommandCancelledError(stage.value)

    def _enter(self, run: CommandRun, progress: ProgressSink, state: CommandState, message: str) -> None:
        run.advance(state)
        progress.emit(state.value, message)

    async def _process(
        self,
        run: CommandRun,
        progress: ProgressSink,
        fail_fast: Optional[bool],
        cancel_event: Optional[asyncio.Event],
    ) -> ExecutionResult:
        command = run.command
        progress.emit(CommandState.RECEIVED.value, f"Received: {command.instruction_text}")

        self._check_cancel(cancel_event, CommandState.EXTRACTING)
        self._enter(run, progress, CommandState.EXTRACTING, "Extracting intents")
        intents = await self.intent_parser.parse(command)
        if not intents:
            run.result = ExecutionResult(no_operations=True)
            run.advance(CommandState.COMPLETED)
            progress.emit(CommandState.COMPLETED.value, run.result.summary(), "warning")
            return run.result
        progress.emit(CommandState.EXTRACTING.value, f"Extracted {len(intents)} intent(s)", "success")

        self._check_cancel(cancel_event, CommandState.RESOLVING)
        self._enter(run, progress, CommandState.RESOLVING, "Resolving references")

        async def disambiguate(candidate_set: CandidateSet) -> Id:
            self._check_cancel(cancel_event, CommandState.AWAITING_DISAMBIGUATION)
            self._enter(
                run, progress, CommandState.AWAITING_DISAMBIGUATION,
                f"Choosing among {len(candidate_set.candidates)} candidates for {candidate_set.describe()}",
            )
            selected = await self.disambiguator.select(
                command.instruction_text,
                candidate_set.reference.type,
                candidate_set.candidates,
                candidate_set.reference.properties,
            )
            run.advance(CommandState.RESOLVING)
            return selected

        entries = await self.reference_resolver.resolve_all(intents, command, disambiguate, progress)

        self._check_cancel(cancel_event, CommandState.COMPILING)
        self._enter(run, progress, CommandState.COMPILING, f"Compiling {len(entries)} operation(s)")
        batch = self.compiler.compile(entries)
        missing = self.executor.missing_systems(batch)
        if missing:
            raise PipelineError(f"No gateway configured for the {missing[0]} system")

        self._check_cancel(cancel_event, CommandState.EXECUTING)
        self._enter(run, progress, CommandState.EXECUTING, f"Executing {len(batch)} operation(s)")
        result = await self.executor.execute(batch, fail_fast=fail_fast, cancel_event=cancel_event, progress=progress)

        run.result = result
        run.advance(CommandState.COMPLETED)
        severity = "success" if result.failed_count == 0 and result.skipped_count == 0 else "warning"
        progress.emit(CommandState.COMPLETED.value, result.summary(), severity)
        return result

    @staticmethod
    def _as_command(command: Union[Command, str], context_hint: Optional[str]) -> Command:
        if isinstance(command, Command):
            return command
        return Command(instruction_text=command, context_hint=context_hint)

    async def run(
        self,
        command: Union[Command, str],
        context_hint: Optional[str] = None,
        fail_fast: Optional[bool] = None,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressSink] = None,
    ) -> ExecutionResult:
        """Execute the orchestrated pipeline for ``command``.

        Fatal errors (extraction, unresolved or ambiguous references,
        compilation, cancellation) are raised before anything executes.
        Per-operation failures are reported in the returned result.
        """
        progress = progress or ProgressSink()
        run = CommandRun(command=self._as_command(command, context_hint))
        try:
            return await self._process(run, progress, fail_fast, cancel_event)
        except PipelineError as e:
            self._finish_failed(run, progress, e)
            raise

    async def handle(
        self,
        command: Union[Command, str],
        context_hint: Optional[str] = None,
        fail_fast: Optional[bool] = None,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressSink] = None,
    ) -> CommandRun:
        """Like :meth:`run` but never raises; the outcome is in the returned run."""
        progress = progress or ProgressSink()
        run = CommandRun(command=self._as_command(command, context_hint))
        try:
            await self._process(run, progress, fail_fast, cancel_event)
        except PipelineError as e:
            self._finish_failed(run, progress, e)
        except Exception as e:
            logger.exception(f"Unexpected error while handling: {run.command.instruction_text}")
            self._finish_failed(run, progress, e)
        run.events = list(progress.events)
        return run

    @staticmethod
    def _finish_failed(run: CommandRun, progress: ProgressSink, error: Exception) -> None:
        run.error = str(error)
        run.error_type = type(error).__name__
        if isinstance(error, CommandCancelledError):
            run.advance(CommandState.CANCELLED)
            progress.emit(CommandState.CANCELLED.value, str(error), "warning")
        else:
            run.advance(CommandState.FAILED)
            progress.emit(CommandState.FAILED.value, str(error), "error")
