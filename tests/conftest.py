"""
Pytest configuration and shared fixtures for rulebook tests.
"""

import logging
import os
import sys
from pathlib import Path

import pandas as pd
import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from rulebook.config import clear_settings_cache  # noqa: E402


@pytest.fixture(autouse=True)
def reset_test_env(monkeypatch, tmp_path):
    """Clear RULEBOOK_* variables and the settings cache before each test."""
    for key in list(os.environ):
        if key.upper().startswith("RULEBOOK_"):
            monkeypatch.delenv(key, raising=False)
    # keep a stray .env in the working directory from leaking into settings
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch):
    """Undo handlers and levels installed by setup_logging()."""
    import rulebook.logging as rulebook_logging

    root = logging.getLogger()
    level = root.level
    monkeypatch.setattr(rulebook_logging, "_CONFIGURED", False)
    yield
    for handler in list(root.handlers):
        if getattr(handler, "_rulebook", False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def retailers() -> pd.DataFrame:
    """Small business survey with a few deliberate problems."""
    return pd.DataFrame(
        {
            "id": ["r1", "r2", "r3", "r4", "r5"],
            "size": ["sc0", "sc1", "sc2", "sc1", None],
            "staff": [3, 1, None, 20, 5],
            "turnover": [100.0, 80.0, 200.0, None, 50.0],
            "other_rev": [10.0, 0.0, 5.0, 2.0, 1.0],
            "total_rev": [110.0, 80.0, 210.0, 2.0, 60.0],
            "profit": [5.0, -3.0, 20.0, 1.0, 4.0],
        }
    )


@pytest.fixture
def project_root() -> Path:
    """Return path to project root."""
    return Path(__file__).parent.parent
