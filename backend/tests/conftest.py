"""Pytest configuration and fixtures."""
import sys
from pathlib import Path

import pytest

# Ensure backend root is on path when running pytest from repo root or backend
backend = Path(__file__).resolve().parent.parent
if str(backend) not in sys.path:
    sys.path.insert(0, str(backend))


@pytest.fixture
def posts_db(tmp_path):
    """Fresh SQLite posts DB with all migrations applied."""
    from src.data.posts_repo import init_db

    db = tmp_path / "posts.sqlite"
    init_db(db)
    return db
