from __future__ import annotations

import sys
from pathlib import Path

import pytest


# Ensure the project is importable without installation
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project root with an empty ``public`` document root."""
    (tmp_path / "public").mkdir()
    return tmp_path
