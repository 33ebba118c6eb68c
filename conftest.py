"""Test configuration ensuring repository root is on ``sys.path``."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from utils.database_setup import setup_crm_database  # noqa: E402


@pytest.fixture
def crm_db(tmp_path) -> str:
    """A fresh SQLite CRM database with sample companies and contacts."""
    return setup_crm_database(str(tmp_path / "crm.sqlite"))
