"""High level workflow interface using the configurable :class:`Orchestrator`."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.config import PipelineSettings, load_settings
from core.orchestrator import CommandRun, Orchestrator
from services.progress import ProgressSink

DEFAULT_CONFIG = Path(__file__).resolve().parent / "workflow.yaml"


def inject_settings(config: Dict[str, Any], settings: PipelineSettings) -> Dict[str, Any]:
    """Copy runtime credentials into the constructor params of ``config``."""
    model = config.get("model")
    if model:
        params = model.setdefault("params", {})
        params.setdefault("api_key", settings.openai_api_key)
        params.setdefault("model", settings.openai_model)
        params.setdefault("timeout", settings.model_timeout)

    for cfg in (config.get("systems") or {}).values():
        if not cfg:
            continue
        params = cfg.setdefault("params", {})
        cls = cfg["class"]
        if cls.endswith("SQLiteGateway"):
            params["db_path"] = settings.db_path
        elif cls.endswith("SupabaseGateway"):
            params.setdefault("url", settings.supabase_url)
            params.setdefault("key", settings.supabase_key)
        elif cls.endswith("MondayGateway"):
            params.setdefault("api_token", settings.monday_api_token)
        if not cls.endswith("SQLiteGateway"):
            params.setdefault("lookup_timeout", settings.lookup_timeout)
            params.setdefault("mutation_timeout", settings.mutation_timeout)

    executor = (config.get("steps") or {}).get("executor")
    if executor:
        params = executor.setdefault("params", {})
        params["max_concurrency"] = settings.max_concurrency
        params.setdefault("mutation_timeout", settings.mutation_timeout)
    return config


class CommandWorkflow:
    """Thin wrapper around :class:`Orchestrator` wiring config and credentials."""

    def __init__(
        self,
        config_path: str | Path | None = None,
        settings: Optional[PipelineSettings] = None,
        **components: Any,
    ):
        config_path = config_path or DEFAULT_CONFIG
        with open(config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        self.settings = settings or load_settings()
        self.orchestrator = Orchestrator(inject_settings(config, self.settings), **components)

    async def run(
        self,
        instruction: str,
        context_hint: Optional[str] = None,
        fail_fast: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressSink] = None,
    ) -> CommandRun:
        """Execute the orchestrated workflow for ``instruction``."""
        return await self.orchestrator.handle(
            instruction,
            context_hint=context_hint,
            fail_fast=fail_fast,
            cancel_event=cancel_event,
            progress=progress,
        )

    async def aclose(self) -> None:
        await self.orchestrator.aclose()
