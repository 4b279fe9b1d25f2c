"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _read_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


@pytest.fixture
def program_html() -> str:
    return _read_fixture("program.html")


@pytest.fixture
def structured_html() -> str:
    return _read_fixture("structured_program.html")


@pytest.fixture
def microdata_html() -> str:
    return _read_fixture("microdata_program.html")


@pytest.fixture
def bare_html() -> str:
    return _read_fixture("bare.html")
