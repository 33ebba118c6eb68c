# main.py
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace

from dotenv import load_dotenv

from core.config import load_settings
from core.workflow import CommandWorkflow
from utils.database_setup import setup_crm_database

# Load environment variables
load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one natural language command against the CRM and boards.")
    parser.add_argument("instruction", help="Free-form instruction, e.g. 'Add a company TechCorp of type Fintech'")
    parser.add_argument("--context", help="Current view or table name used to bias extraction")
    parser.add_argument("--fail-fast", action="store_true", help="Skip the remaining operations after the first failure")
    parser.add_argument("--config", help="Path to a workflow YAML file")
    parser.add_argument("--db", help="SQLite database path for the records system")
    parser.add_argument("--init-db", action="store_true", help="Create the CRM tables (with sample rows) first")
    return parser


async def run_command(args: argparse.Namespace) -> int:
    settings = load_settings()
    if args.db:
        settings = replace(settings, db_path=args.db)
    if args.init_db:
        setup_crm_database(settings.db_path)

    workflow = CommandWorkflow(args.config, settings=settings)
    try:
        run = await workflow.run(args.instruction, context_hint=args.context, fail_fast=args.fail_fast)
    finally:
        await workflow.aclose()

    summary = {
        "state": run.state.value,
        "error": run.error,
        "result": run.result.model_dump(mode="json") if run.result else None,
        "summary": run.result.summary() if run.result else None,
    }
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0 if run.state.value == "completed" else 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
