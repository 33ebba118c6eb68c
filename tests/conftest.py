"""Shared fixtures for the pipeline tests."""
import pytest

from helpers import FakeBoards, sample_boards


@pytest.fixture
def boards() -> FakeBoards:
    return FakeBoards(sample_boards())
