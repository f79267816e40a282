# tests/conftest.py
"""
Pytest configuration and fixtures.
Adds src to sys.path so `import licensetag` works without installing.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

from licensetag.utils.logging_config import Logger  # noqa: E402

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path, monkeypatch):
    """Send file logs to a temporary directory and drop pipeline overrides."""
    monkeypatch.setenv("LICENSETAG_LOG_DIR", str(tmp_path / "logs"))
    for name in ("LICENSETAG_WORKERS", "LICENSETAG_BATCH_SIZE", "LICENSETAG_BEST_EFFORT"):
        monkeypatch.delenv(name, raising=False)
    Logger.close()
    yield
    Logger.close()


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def kbart_file() -> Path:
    return FIXTURES / "kbart.tsv"
