"""Pytest configuration for the user sync test suite."""

import os
import sys
from pathlib import Path
from typing import Generator

import pytest


def _ensure_test_env() -> None:
    """Seed required environment variables for tests."""
    os.environ.setdefault("WORKOS_API_KEY", "sk_test_key")
    os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))
HELPERS = Path(__file__).resolve().parent / "helpers"
sys.path.insert(0, str(HELPERS))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402


@pytest.fixture
def sqlite_session_factory(tmp_path: Path) -> Generator[sessionmaker, None, None]:
    """Provide a sqlite session factory backed by a temp file."""
    from models import Base

    engine = create_engine(f"sqlite:///{tmp_path / 'sync.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    yield factory
    engine.dispose()
